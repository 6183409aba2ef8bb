"""
Address consolidation - merge adjacent address components into one ADDRESS.

Components (street name, street number, postal code, city, country, region)
are grouped when they follow each other within a maximum character gap, in
the same paragraph, with no other entity between them. A group becomes an
ADDRESS only if its component order follows a known country grammar:

- SWISS:       street ... postal code ... city      ("Rue de Lausanne 12, 1000 Lausanne")
- EU:          street ... postal code ... city ... country
- ALTERNATIVE: postal code ... city ... street      ("8001 Zürich, Bahnhofstrasse 1")

Anything else (a lone postal code, postal code + city without a street) is
PARTIAL and left untouched.
"""

import logging
import re
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..detectors.entity import EntitySource, PIIEntity

logger = logging.getLogger(__name__)

GRAMMAR_SWISS = "SWISS"
GRAMMAR_EU = "EU"
GRAMMAR_ALTERNATIVE = "ALTERNATIVE"
GRAMMAR_PARTIAL = "PARTIAL"
GRAMMAR_NONE = "NONE"

MERGEABLE_GRAMMARS = (GRAMMAR_SWISS, GRAMMAR_EU, GRAMMAR_ALTERNATIVE)

ADDRESS_TYPE = "ADDRESS"

# Two line breaks with only blanks between them end a paragraph
PARAGRAPH_BREAK = re.compile(r'\n[^\S\n]*\n')

# A single line break between components doubles the allowed gap
NEWLINE_GAP_FACTOR = 2


def _is_adjacent(previous: PIIEntity, following: PIIEntity, text: str, max_gap: int) -> bool:
    gap_text = text[previous.end:following.start]
    if PARAGRAPH_BREAK.search(gap_text):
        return False
    limit = max_gap * NEWLINE_GAP_FACTOR if '\n' in gap_text else max_gap
    return len(gap_text) <= limit


def group_components(
    entities: Sequence[PIIEntity],
    text: str,
    component_types: Iterable[str],
    max_gap: int
) -> List[List[PIIEntity]]:
    """
    Split start-ordered entities into runs of adjacent address components.

    Args:
        entities: Entities sorted by start
        text: Text the offsets refer to
        component_types: Entity types treated as address components
        max_gap: Maximum characters between two consecutive components

    Returns:
        Groups of components, each in document order
    """
    component_types = set(component_types)
    groups: List[List[PIIEntity]] = []
    current: List[PIIEntity] = []
    for entity in entities:
        if entity.entity_type not in component_types:
            # Any other entity between two components separates them
            if current:
                groups.append(current)
                current = []
            continue
        if current and not _is_adjacent(current[-1], entity, text, max_gap):
            groups.append(current)
            current = []
        current.append(entity)
    if current:
        groups.append(current)
    return groups


def _first_index(types: List[str], entity_type: str) -> Optional[int]:
    try:
        return types.index(entity_type)
    except ValueError:
        return None


def classify_grammar(group: Sequence[PIIEntity]) -> str:
    """
    Match a component group against the known address grammars.

    Returns:
        One of GRAMMAR_SWISS, GRAMMAR_EU, GRAMMAR_ALTERNATIVE, GRAMMAR_PARTIAL, GRAMMAR_NONE
    """
    types = [e.entity_type for e in group]
    street = _first_index(types, "STREET_NAME")
    postal = _first_index(types, "POSTAL_CODE")
    city = _first_index(types, "CITY")
    country = _first_index(types, "COUNTRY")

    if street is None and postal is None and city is None:
        return GRAMMAR_NONE
    if street is None or postal is None or city is None:
        return GRAMMAR_PARTIAL

    if street < postal < city:
        if country is not None and country > city:
            return GRAMMAR_EU
        return GRAMMAR_SWISS
    if postal < city < street:
        return GRAMMAR_ALTERNATIVE
    return GRAMMAR_PARTIAL


def grammar_confidence(group: Sequence[PIIEntity], grammar: str) -> float:
    """Structural score of a grammar match (reported in metadata)."""
    if grammar not in MERGEABLE_GRAMMARS:
        return 0.0
    types = set(e.entity_type for e in group)
    score = 0.85 if grammar in (GRAMMAR_SWISS, GRAMMAR_EU) else 0.75
    # street + postal + city are the three required components
    score += 0.02 * max(0, len(group) - 3)
    if {"STREET_NAME", "STREET_NUMBER"} <= types:
        score += 0.05
    if {"POSTAL_CODE", "CITY"} <= types:
        score += 0.05
    return min(1.0, round(score, 4))


def aggregate_confidence(group: Sequence[PIIEntity], strategy: str) -> float:
    """
    Combine component confidences.

    Args:
        group: Components of one address
        strategy: "min" (weakest component), "mean", or "length_weighted"
            (mean weighted by span length)
    """
    confidences = [e.confidence for e in group]
    if strategy == "min":
        return min(confidences)
    if strategy == "mean":
        return sum(confidences) / len(confidences)
    if strategy == "length_weighted":
        total = sum(e.length for e in group)
        if total <= 0:
            return sum(confidences) / len(confidences)
        return sum(e.confidence * e.length for e in group) / total
    raise ValueError(f"Unknown confidence aggregate: {strategy}")


def consolidate_addresses(
    entities: Sequence[PIIEntity],
    text: str,
    component_types: Iterable[str],
    max_gap: int = 50,
    min_components: int = 2,
    aggregate: str = "min",
    min_confidence: float = 0.5,
    retain_components: bool = False
) -> Tuple[List[PIIEntity], List[PIIEntity], int]:
    """
    Replace grammatical component groups by synthesized ADDRESS entities.

    Args:
        entities: Span-disjoint entities sorted by start
        text: Text the offsets refer to
        component_types: Entity types treated as address components
        max_gap: Maximum characters between consecutive components
        min_components: Smallest group that may become an address
        aggregate: Confidence aggregate strategy
        min_confidence: Groups scoring below this are left alone
        retain_components: Return merged components with a back-reference

    Returns:
        Tuple of (entities, retained_components, addresses_created)
    """
    addresses: Dict[int, PIIEntity] = {}   # id() of first component -> address
    consumed = set()
    retained: List[PIIEntity] = []

    for group in group_components(entities, text, component_types, max_gap):
        if len(group) < min_components:
            continue
        grammar = classify_grammar(group)
        if grammar not in MERGEABLE_GRAMMARS:
            logger.debug(f"Address components {[e.entity_type for e in group]} left standalone ({grammar})")
            continue
        confidence = aggregate_confidence(group, aggregate)
        if confidence < min_confidence:
            logger.debug(f"Address group below confidence threshold ({confidence:.2f} < {min_confidence})")
            continue

        start = group[0].start
        end = max(e.end for e in group)
        address = PIIEntity(
            entity_type=ADDRESS_TYPE,
            text=text[start:end],
            start=start,
            end=end,
            confidence=confidence,
            source=EntitySource.CONSOLIDATED,
            metadata={
                "components": list(group),
                "address_grammar": grammar,
                "grammar_confidence": grammar_confidence(group, grammar),
            },
        )
        addresses[id(group[0])] = address
        consumed.update(id(e) for e in group)
        if retain_components:
            retained.extend(
                replace(e, metadata={**e.metadata, "consolidated_into": address.entity_id})
                for e in group
            )

    if not addresses:
        return list(entities), retained, 0

    result = []
    for entity in entities:
        if id(entity) in addresses:
            result.append(addresses[id(entity)])
        elif id(entity) not in consumed:
            result.append(entity)
    return result, retained, len(addresses)
