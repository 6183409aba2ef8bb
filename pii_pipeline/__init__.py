"""
PII Pipeline - Entity detection & consolidation

Normalizes text, runs local (Presidio) and opt-in remote recognizers,
validates candidates and consolidates them into span-disjoint, linked
entities over the original text.
"""

from .detection_config import VERSION
__version__ = VERSION

# Lazy imports so importing the package does not load Presidio
_lazy_imports = {
    "DetectionPipeline": ".pipeline",
    "PipelineResult": ".pipeline",
    "TextNormalizer": ".preprocessing.text_normalizer",
    "NormalizationResult": ".preprocessing.text_normalizer",
    "ConsolidationPass": ".postprocessing.consolidation",
    "ConsolidationConfig": ".postprocessing.consolidation",
    "PIIEntity": ".detectors.entity",
    "EntitySource": ".detectors.entity",
    "DetectionConfig": ".detection_config",
    "get_config": ".detection_config",
}


def __getattr__(name):
    """Lazy import for heavy modules."""
    if name in _lazy_imports:
        import importlib
        module = importlib.import_module(_lazy_imports[name], __package__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = list(_lazy_imports)
