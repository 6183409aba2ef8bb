"""
Consolidation & span repair - the last pass over candidate entities.

Pass 0: Drop malformed spans (inverted, out of bounds), repair stale text
Stage A: Resolve overlaps by type priority -> span length -> confidence
Stage B: Merge adjacent address components into ADDRESS entities
Stage C: Link repeated literals under one logical ID ("PERSON_1")

The result is span-disjoint and expressed over the text it was given
(normalized text inside the pipeline); mapping back to original offsets is
the caller's job.
"""

import bisect
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..detection_config import (
    ADDRESS_COMPONENT_TYPES,
    CONFIDENCE_AGGREGATES,
    DEFAULT_CONSOLIDATION,
    DEFAULT_ENTITY_PRIORITY,
    LINKING_BASE_TYPES,
    LINKING_STRATEGIES,
    LOCAL_RECOGNIZER_PRIORITY,
)
from ..detectors.entity import MALFORMED_ENTITY, Diagnostic, PIIEntity, record_diagnostic
from ..exceptions import ConfigurationError
from .address_consolidation import consolidate_addresses

logger = logging.getLogger(__name__)

# Honorifics ignored by the "fuzzy" linking strategy
TITLE_VARIATIONS = {
    "mr", "mrs", "ms", "miss", "dr", "prof", "sir",
    "herr", "frau", "fr",
    "m", "mme", "mlle", "monsieur", "madame", "mademoiselle",
}


@dataclass(frozen=True)
class ConsolidationConfig:
    """
    Settings for the consolidation pass.

    Attributes:
        entity_priority: Entity type -> priority (higher wins overlaps)
        enable_overlap_resolution: Run stage A
        enable_address_consolidation: Run stage B
        enable_entity_linking: Run stage C
        address_max_gap: Max characters between two address components
        retain_components: Return merged components with a back-reference
        min_address_components: Smallest component group merged into an ADDRESS
        confidence_aggregate: "min", "mean" or "length_weighted"
        min_consolidation_confidence: Address groups below this stay unmerged
        linking_strategy: "exact", "normalized" or "fuzzy"
        address_component_types: Entity types grouped by stage B
    """
    entity_priority: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_ENTITY_PRIORITY))
    enable_overlap_resolution: bool = True
    enable_address_consolidation: bool = True
    enable_entity_linking: bool = True
    address_max_gap: int = 50
    retain_components: bool = False
    min_address_components: int = 2
    confidence_aggregate: str = "min"
    min_consolidation_confidence: float = 0.5
    linking_strategy: str = "normalized"
    address_component_types: Tuple[str, ...] = ADDRESS_COMPONENT_TYPES

    def __post_init__(self):
        if isinstance(self.address_max_gap, bool) or not isinstance(self.address_max_gap, int) \
                or self.address_max_gap < 0:
            raise ConfigurationError(f"address_max_gap must be a non-negative integer, got {self.address_max_gap!r}")
        if not isinstance(self.min_address_components, int) or self.min_address_components < 2:
            raise ConfigurationError("min_address_components must be at least 2")
        if self.confidence_aggregate not in CONFIDENCE_AGGREGATES:
            raise ConfigurationError(
                f"Unknown confidence aggregate {self.confidence_aggregate!r}, "
                f"expected one of {', '.join(CONFIDENCE_AGGREGATES)}"
            )
        if self.linking_strategy not in LINKING_STRATEGIES:
            raise ConfigurationError(
                f"Unknown linking strategy {self.linking_strategy!r}, "
                f"expected one of {', '.join(LINKING_STRATEGIES)}"
            )
        for flag in ("enable_overlap_resolution", "enable_address_consolidation",
                     "enable_entity_linking", "retain_components"):
            if not isinstance(getattr(self, flag), bool):
                raise ConfigurationError(f"{flag} must be true or false, got {getattr(self, flag)!r}")
        confidence = self.min_consolidation_confidence
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ConfigurationError(f"min_consolidation_confidence must be a number, got {confidence!r}")
        if not 0.0 <= confidence <= 1.0:
            raise ConfigurationError("min_consolidation_confidence must be within [0, 1]")
        object.__setattr__(self, "entity_priority", MappingProxyType(dict(self.entity_priority)))
        object.__setattr__(self, "address_component_types", tuple(self.address_component_types))

    @classmethod
    def from_settings(
        cls,
        settings: Dict[str, Any],
        entity_priority: Optional[Mapping[str, float]] = None
    ) -> "ConsolidationConfig":
        unknown = set(settings) - set(DEFAULT_CONSOLIDATION)
        if unknown:
            raise ConfigurationError(f"Unknown consolidation settings: {sorted(unknown)}")
        merged = {**DEFAULT_CONSOLIDATION, **settings}
        return cls(entity_priority=entity_priority or DEFAULT_ENTITY_PRIORITY, **merged)

    def priority_of(self, entity_type: str) -> float:
        return self.entity_priority.get(entity_type, 0)


@dataclass
class ConsolidationStats:
    original_count: int = 0
    malformed_dropped: int = 0
    overlaps_resolved: int = 0
    addresses_consolidated: int = 0
    entities_linked: int = 0
    duration_ms: float = 0.0


@dataclass
class ConsolidationResult:
    """
    Output of the consolidation pass.

    Attributes:
        entities: Span-disjoint entities sorted by start
        component_entities: Merged address components (only with retain_components)
        diagnostics: Dropped malformed entities
        stats: Counters for each stage
    """
    entities: List[PIIEntity]
    component_entities: List[PIIEntity] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    stats: ConsolidationStats = field(default_factory=ConsolidationStats)


def is_well_formed(entity: PIIEntity, text_length: int) -> bool:
    """Offsets are integers with 0 <= start < end <= text_length."""
    start, end = entity.start, entity.end
    if isinstance(start, bool) or isinstance(end, bool):
        return False
    if not isinstance(start, int) or not isinstance(end, int):
        return False
    return 0 <= start < end <= text_length


def resolve_overlaps(entities: Iterable[PIIEntity], config: ConsolidationConfig) -> List[PIIEntity]:
    """
    Greedy maximal independent set over the overlap graph.

    Candidates are ranked by type priority, then span length, then
    confidence, then recognizer priority; each is kept if it overlaps nothing
    kept before it. Not globally optimal, but deterministic.

    Returns:
        Span-disjoint entities sorted by start
    """
    ranked = sorted(
        entities,
        key=lambda e: (
            -config.priority_of(e.entity_type),
            -e.length,
            -e.confidence,
            -e.metadata.get("recognizer_priority", LOCAL_RECOGNIZER_PRIORITY),
            e.start,
            e.entity_type,
        ),
    )
    starts: List[int] = []
    kept: List[PIIEntity] = []
    for entity in ranked:
        i = bisect.bisect_left(starts, entity.start)
        # kept is disjoint and sorted, so only the neighbours can overlap
        if i > 0 and kept[i - 1].end > entity.start:
            continue
        if i < len(kept) and kept[i].start < entity.end:
            continue
        starts.insert(i, entity.start)
        kept.insert(i, entity)
    return kept


def linking_key(text: str, strategy: str = "normalized") -> str:
    """
    Literal form used to link repeated mentions.

    Args:
        text: Entity text
        strategy: "exact" (as is), "normalized" (case/whitespace-insensitive),
            "fuzzy" (normalized, honorifics and trailing punctuation dropped)
    """
    if strategy == "exact":
        return text
    normalized = " ".join(text.split()).casefold()
    if strategy == "fuzzy":
        tokens = normalized.split(" ")
        while len(tokens) > 1 and tokens[0].rstrip(".") in TITLE_VARIATIONS:
            tokens.pop(0)
        normalized = " ".join(tokens).strip(" .,;:")
    return normalized


def base_type(entity_type: str) -> str:
    """Type used for linking ("PERSON_NAME" and "PERSON" share IDs)"""
    return LINKING_BASE_TYPES.get(entity_type, entity_type)


def link_entities(entities: Sequence[PIIEntity], strategy: str = "normalized") -> int:
    """
    Assign metadata["logical_id"] per (base type, literal) group, numbered
    per base type in order of first occurrence.

    Returns:
        Number of entities sharing their logical ID with at least one other
    """
    counters: Dict[str, int] = defaultdict(int)
    ids: Dict[Tuple[str, str], str] = {}
    group_sizes: Dict[str, int] = defaultdict(int)
    for entity in sorted(entities, key=lambda e: (e.start, e.end)):
        linked_type = base_type(entity.entity_type)
        key = (linked_type, linking_key(entity.text, strategy))
        if key not in ids:
            counters[linked_type] += 1
            ids[key] = f"{linked_type}_{counters[linked_type]}"
        entity.metadata["logical_id"] = ids[key]
        group_sizes[ids[key]] += 1
    return sum(size for size in group_sizes.values() if size > 1)


class ConsolidationPass:
    """
    Turns the raw candidate set into the final, span-disjoint entity list.

    Never fails on well-formed input; malformed entities are dropped with a
    diagnostic so one bad upstream detection cannot abort a document.
    """

    def __init__(self, config: Optional[ConsolidationConfig] = None):
        self.config = config or ConsolidationConfig()

    def run(self, entities: Iterable[PIIEntity], text: str) -> ConsolidationResult:
        """
        Consolidate candidates detected over ``text``.

        Args:
            entities: Candidate entities (not mutated)
            text: Text the candidate offsets refer to

        Returns:
            ConsolidationResult
        """
        started = time.perf_counter()
        config = self.config
        candidates = list(entities)
        diagnostics: List[Diagnostic] = []
        stats = ConsolidationStats(original_count=len(candidates))

        # Pass 0: span repair
        working = self._repair_spans(candidates, text, diagnostics)
        stats.malformed_dropped = len(candidates) - len(working)

        # Stage A: overlap resolution
        if config.enable_overlap_resolution:
            resolved = resolve_overlaps(working, config)
            stats.overlaps_resolved = len(working) - len(resolved)
            working = resolved
        else:
            working.sort(key=lambda e: (e.start, e.end))

        # Stage B: address consolidation
        retained: List[PIIEntity] = []
        if config.enable_address_consolidation:
            working, retained, stats.addresses_consolidated = consolidate_addresses(
                working,
                text,
                config.address_component_types,
                max_gap=config.address_max_gap,
                min_components=config.min_address_components,
                aggregate=config.confidence_aggregate,
                min_confidence=config.min_consolidation_confidence,
                retain_components=config.retain_components,
            )

        # Stage C: entity linking
        if config.enable_entity_linking:
            stats.entities_linked = link_entities(working, config.linking_strategy)

        stats.duration_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Consolidated {stats.original_count} candidates into {len(working)} entities "
            f"(malformed={stats.malformed_dropped}, overlaps={stats.overlaps_resolved}, "
            f"addresses={stats.addresses_consolidated}, linked={stats.entities_linked})"
        )
        return ConsolidationResult(working, retained, diagnostics, stats)

    def _repair_spans(
        self,
        entities: List[PIIEntity],
        text: str,
        diagnostics: List[Diagnostic]
    ) -> List[PIIEntity]:
        repaired = []
        text_length = len(text)
        for entity in entities:
            if not is_well_formed(entity, text_length):
                record_diagnostic(
                    diagnostics, MALFORMED_ENTITY,
                    f"Dropped {entity.entity_type} with span [{entity.start}, {entity.end}) "
                    f"over text of length {text_length}",
                    log=logger,
                    entity_type=entity.entity_type,
                    start=entity.start,
                    end=entity.end,
                    source=getattr(entity.source, "value", entity.source),
                    recognizer=entity.metadata.get("recognizer"),
                )
                continue
            # Work on copies so callers keep their candidates untouched
            copy = replace(entity, metadata=dict(entity.metadata))
            actual = text[entity.start:entity.end]
            if copy.text != actual:
                logger.debug(f"Repaired text of {entity.entity_type} at [{entity.start}, {entity.end})")
                copy.text = actual
            repaired.append(copy)
        return repaired


def consolidate(
    entities: Iterable[PIIEntity],
    text: str,
    config: Optional[ConsolidationConfig] = None
) -> ConsolidationResult:
    """Run the consolidation pass with the given (or default) configuration."""
    return ConsolidationPass(config).run(entities, text)
