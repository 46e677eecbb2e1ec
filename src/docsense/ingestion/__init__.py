"""Document ingestion pipeline."""

from .chunking import bound_chunks, chunk_text, split_sections
from .extractors import ExtractionDispatcher, ExtractionError, Extractor
from .fetch import FetchedFile, FetchError, HttpFileFetcher
from .service import IngestionConfig, IngestionError, IngestionPipeline

__all__ = [
    "ExtractionDispatcher",
    "ExtractionError",
    "Extractor",
    "FetchError",
    "FetchedFile",
    "HttpFileFetcher",
    "IngestionConfig",
    "IngestionError",
    "IngestionPipeline",
    "bound_chunks",
    "chunk_text",
    "split_sections",
]
