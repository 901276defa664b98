"""Utility modules."""

from .config import Settings, get_settings
from .locks import KeyedLock
from .parsing import extract_json

__all__ = ["Settings", "get_settings", "KeyedLock", "extract_json"]
