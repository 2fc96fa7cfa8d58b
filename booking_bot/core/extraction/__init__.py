"""Utterance extraction module."""

from .types import ExtractionResult, MISSING_DATETIME, MISSING_SERVICE
from .heuristic import HeuristicExtractor, match_service, resolve_missing
from .delegate import ClaudeExtractionDelegate, ExtractionContext, ExtractionDelegate
from .extractor import TextExtractor, build_text_extractor

__all__ = [
    # Types
    "ExtractionResult",
    "MISSING_DATETIME",
    "MISSING_SERVICE",
    # Heuristic
    "HeuristicExtractor",
    "match_service",
    "resolve_missing",
    # Delegate
    "ExtractionContext",
    "ExtractionDelegate",
    "ClaudeExtractionDelegate",
    # Extractor
    "TextExtractor",
    "build_text_extractor",
]
