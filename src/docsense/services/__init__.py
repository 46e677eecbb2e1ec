"""Service layer orchestrations for docsense."""

from .generation import GenerationConfig, GeminiGenerator, GenerativeProvider, TemplateGenerator
from .retry import ProviderError, RetryPolicy

__all__ = [
    "GenerationConfig",
    "GeminiGenerator",
    "GenerativeProvider",
    "ProviderError",
    "RetryPolicy",
    "TemplateGenerator",
]
