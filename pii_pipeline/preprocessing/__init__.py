"""Text normalization ahead of PII detection."""

from .text_normalizer import (
    NormalizerOptions,
    NormalizationResult,
    TextNormalizer,
    map_span,
    normalize_text,
)

__all__ = [
    'NormalizerOptions',
    'NormalizationResult',
    'TextNormalizer',
    'map_span',
    'normalize_text',
]
