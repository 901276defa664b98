"""
AI Visibility Engine

Analyzes how visible a domain is across AI language models:
- Resumable onboarding pipeline (submission -> report)
- Fan-out querying of phrases across several model providers
- Aggregation of raw observations into dashboard metrics
- Versioned, at-most-once computed result cache
"""

__version__ = "0.1.0"
