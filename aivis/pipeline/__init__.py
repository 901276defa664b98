"""Resumable onboarding pipeline."""

from .stages import (
    Stage,
    StagePayload,
    SubmissionData,
    ExtractionData,
    KeywordEntry,
    KeywordDiscoveryData,
    PhraseEntry,
    PhraseGenerationData,
    AIQueryingData,
    ReportData,
    parse_payload,
    parse_step_data,
    stage_of,
)
from .state_machine import PipelineState, PipelineStateMachine

__all__ = [
    "Stage", "StagePayload", "SubmissionData", "ExtractionData", "KeywordEntry",
    "KeywordDiscoveryData", "PhraseEntry", "PhraseGenerationData", "AIQueryingData",
    "ReportData", "parse_payload", "parse_step_data", "stage_of",
    "PipelineState", "PipelineStateMachine",
]
