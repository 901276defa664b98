"""
Pipeline stages and their payloads.

The stage list is fixed and ordered. Each stage has exactly one payload
model, tagged by its `stage` literal, so persisted step data is parsed back
into the right type without guessing.
"""

from enum import IntEnum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class Stage(IntEnum):
    """Ordered onboarding stages. The value is the persisted step index."""
    SUBMISSION = 0
    EXTRACTION = 1
    KEYWORD_DISCOVERY = 2
    PHRASE_GENERATION = 3
    AI_QUERYING = 4
    REPORT = 5

    @property
    def key(self) -> str:
        return self.name.lower()

    @classmethod
    def terminal(cls) -> "Stage":
        return cls.REPORT


# =============================================================================
# PAYLOADS
# =============================================================================

class SubmissionData(BaseModel):
    stage: Literal["submission"] = "submission"
    url: str
    context: Optional[str] = None
    location: Optional[str] = None


class ExtractionData(BaseModel):
    """Output of the external crawler."""
    stage: Literal["extraction"] = "extraction"
    extracted_context: str = ""
    pages_scanned: int = 0
    token_usage: int = 0
    analyzed_urls: List[str] = Field(default_factory=list)


class KeywordEntry(BaseModel):
    term: str
    volume: Optional[int] = None
    difficulty: Optional[float] = None
    cpc: Optional[float] = None
    is_selected: bool = True


class KeywordDiscoveryData(BaseModel):
    stage: Literal["keyword_discovery"] = "keyword_discovery"
    keywords: List[KeywordEntry] = Field(default_factory=list)


class PhraseEntry(BaseModel):
    keyword: str
    text: str
    is_selected: bool = True


class PhraseGenerationData(BaseModel):
    stage: Literal["phrase_generation"] = "phrase_generation"
    phrases: List[PhraseEntry] = Field(default_factory=list)


class AIQueryingData(BaseModel):
    """Summary of the query batch run for the version."""
    stage: Literal["ai_querying"] = "ai_querying"
    batch_id: str
    models: List[str] = Field(default_factory=list)
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    circuit_open_models: List[str] = Field(default_factory=list)
    is_partial: bool = False


class ReportData(BaseModel):
    stage: Literal["report"] = "report"
    dashboard_analysis_id: Optional[int] = None
    visibility_score: float = 0.0
    mention_rate: float = 0.0
    is_partial: bool = False


StagePayload = Annotated[
    Union[
        SubmissionData,
        ExtractionData,
        KeywordDiscoveryData,
        PhraseGenerationData,
        AIQueryingData,
        ReportData,
    ],
    Field(discriminator="stage"),
]

_payload_adapter = TypeAdapter(StagePayload)

PAYLOAD_STAGES = {
    "submission": Stage.SUBMISSION,
    "extraction": Stage.EXTRACTION,
    "keyword_discovery": Stage.KEYWORD_DISCOVERY,
    "phrase_generation": Stage.PHRASE_GENERATION,
    "ai_querying": Stage.AI_QUERYING,
    "report": Stage.REPORT,
}


def stage_of(payload: BaseModel) -> Stage:
    return PAYLOAD_STAGES[payload.stage]


def parse_payload(data: Dict[str, Any]) -> BaseModel:
    """Parse a tagged dict into its stage payload (raises pydantic.ValidationError)."""
    return _payload_adapter.validate_python(data)


def parse_step_data(raw: Optional[Dict[str, Any]]) -> Dict[Stage, BaseModel]:
    """Parse persisted step data (keyed by stage name) into typed payloads."""
    parsed = {}
    for key, value in (raw or {}).items():
        payload = parse_payload(value)
        parsed[stage_of(payload)] = payload
    return parsed
