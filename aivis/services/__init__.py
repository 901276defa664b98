"""Application services."""

from .analysis import AnalysisPipeline

__all__ = ["AnalysisPipeline"]
