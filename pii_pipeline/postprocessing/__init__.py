"""Consolidation of candidate entities: overlaps, addresses, linking."""

from .consolidation import (
    ConsolidationConfig,
    ConsolidationPass,
    ConsolidationResult,
    ConsolidationStats,
    base_type,
    consolidate,
    link_entities,
    linking_key,
    resolve_overlaps,
)
from .address_consolidation import (
    GRAMMAR_SWISS,
    GRAMMAR_EU,
    GRAMMAR_ALTERNATIVE,
    GRAMMAR_PARTIAL,
    GRAMMAR_NONE,
    classify_grammar,
    consolidate_addresses,
    group_components,
)

__all__ = [
    # Consolidation pass
    "ConsolidationConfig",
    "ConsolidationPass",
    "ConsolidationResult",
    "ConsolidationStats",
    "base_type",
    "consolidate",
    "link_entities",
    "linking_key",
    "resolve_overlaps",
    # Address grammar
    "GRAMMAR_SWISS",
    "GRAMMAR_EU",
    "GRAMMAR_ALTERNATIVE",
    "GRAMMAR_PARTIAL",
    "GRAMMAR_NONE",
    "classify_grammar",
    "consolidate_addresses",
    "group_components",
]
