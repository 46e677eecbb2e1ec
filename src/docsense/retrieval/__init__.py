"""Retrieval components."""

from .hybrid import dedupe_by_document_content, filter_by_threshold, keyword_matches, merge_hybrid
from .service import HybridRetriever, RetrievalConfig, SimilarDocumentFinder

__all__ = [
    "HybridRetriever",
    "RetrievalConfig",
    "SimilarDocumentFinder",
    "dedupe_by_document_content",
    "filter_by_threshold",
    "keyword_matches",
    "merge_hybrid",
]
