"""Content-addressed SQLite cache for extracted pages and video mappings."""

from .extraction import ExtractionCache, ExtractionRecord
from .files import FileIndex
from .mapping import MappingCache, MappingInfo, PdfVideoMatching, ReprocessDecision, decide_reprocess
from .store import CacheStore

__all__ = [
    "CacheStore",
    "ExtractionCache",
    "ExtractionRecord",
    "FileIndex",
    "MappingCache",
    "MappingInfo",
    "PdfVideoMatching",
    "ReprocessDecision",
    "decide_reprocess",
]
