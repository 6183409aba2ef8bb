"""
Detection pipeline - normalization, recognition, validation, consolidation.

Pass 1: Normalize text (unicode, whitespace, obfuscated emails, phones)
Pass 2: Run local Presidio recognizers over the normalized text
Pass 3: Fan out to enabled remote recognizers (no-op by default)
Pass 4: Validate candidates by entity type
Pass 5: Consolidate (overlaps, addresses, logical IDs)
Pass 6: Map offsets back onto the original text
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

from .detection_config import DetectionConfig, get_config
from .detectors.entity import MALFORMED_ENTITY, VALIDATOR_REJECTED, Diagnostic, PIIEntity, record_diagnostic
from .detectors.pattern_recognizers import build_default_recognizers
from .detectors.recognizer_registry import RecognizerRegistry
from .detectors.remote_recognizer import build_remote_recognizers
from .detectors.validator_registry import ValidatorRegistry, get_validator_registry
from .postprocessing.consolidation import ConsolidationPass, is_well_formed
from .preprocessing.text_normalizer import NormalizationResult, TextNormalizer

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """
    Result of analyzing one document.

    Attributes:
        entities: Span-disjoint entities over the original text, each with
            metadata["logical_id"]
        component_entities: Address components kept with retain_components,
            each with metadata["consolidated_into"]
        normalization: Normalized text and index map used for detection
        diagnostics: Structured warnings (dropped entities, remote failures)
        stats: Per-pass counters and timing
    """
    entities: List[PIIEntity]
    component_entities: List[PIIEntity] = field(default_factory=list)
    normalization: Optional[NormalizationResult] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "component_entities": [e.to_dict() for e in self.component_entities],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "stats": dict(self.stats),
        }


class DetectionPipeline:
    """
    End-to-end entity detection over one text.

    Args:
        config: Settings (default: the process-wide DetectionConfig)
        registry: Local and remote recognizers (default: built-in pattern
            recognizers plus the configured remote recognizers)
        validators: Validator registry (default: the shared registry)
        normalizer: Text normalizer (default: built from config)
        consolidation: Consolidation pass (default: built from config)
    """

    def __init__(
        self,
        config: Optional[DetectionConfig] = None,
        registry: Optional[RecognizerRegistry] = None,
        validators: Optional[ValidatorRegistry] = None,
        normalizer: Optional[TextNormalizer] = None,
        consolidation: Optional[ConsolidationPass] = None
    ):
        self.config = config or get_config()
        options = self.config.normalizer_options()
        self.normalizer = normalizer or TextNormalizer(options)
        self.registry = registry or RecognizerRegistry(
            local_recognizers=build_default_recognizers(options.supported_locales),
            remote_recognizers=build_remote_recognizers(self.config.remote_recognizer_configs()),
        )
        self.validators = validators or get_validator_registry()
        self.consolidation = consolidation or ConsolidationPass(self.config.consolidation_config())

    def normalize(self, text: str) -> NormalizationResult:
        """Normalize text without detecting anything"""
        return self.normalizer.normalize(text)

    def analyze(
        self,
        text: str,
        language: str = "en",
        candidates: Optional[Iterable[PIIEntity]] = None
    ) -> PipelineResult:
        """
        Synchronous wrapper around analyze_async().

        Must not be called from inside a running event loop; use
        analyze_async() there. Remote clients are closed before the
        temporary event loop ends.
        """
        async def run_once():
            try:
                return await self.analyze_async(text, language, candidates)
            finally:
                await self.aclose()

        return asyncio.run(run_once())

    async def aclose(self):
        """Close network clients of remote recognizers (async callers)"""
        await self.registry.aclose()

    async def analyze_async(
        self,
        text: str,
        language: str = "en",
        candidates: Optional[Iterable[PIIEntity]] = None
    ) -> PipelineResult:
        """
        Analyze text for PII entities with multi-pass detection.

        Args:
            text: Input text
            language: Language code (selects recognizers)
            candidates: Extra entities from external local recognizers,
                with offsets over the normalized text

        Returns:
            PipelineResult in original-text coordinates
        """
        started = time.perf_counter()
        diagnostics: List[Diagnostic] = []
        stats: Dict[str, Any] = {}

        # Pass 1: Normalize
        normalization = self.normalizer.normalize(text)
        normalized = normalization.normalized_text
        logger.debug(f"Pass 1: normalized {len(normalization.original_text)} chars "
                     f"(steps: {', '.join(normalization.steps_applied) or 'none'})")

        # Pass 2: Local recognizers
        entities = self.registry.analyze_local(normalized, language, diagnostics)
        external = list(candidates or [])
        stats["local_candidates"] = len(entities) + len(external)
        entities.extend(external)
        logger.debug(f"Pass 2: {stats['local_candidates']} local candidates")

        # Pass 3: Remote recognizers (returns immediately when none is enabled)
        remote = await self.registry.analyze_remote(
            normalized, language, self.config.get_remote_timeout(), diagnostics
        )
        stats["remote_candidates"] = len(remote)
        entities.extend(remote)
        if remote:
            logger.debug(f"Pass 3: {len(remote)} remote candidates")

        # Pass 4: Validate
        entities = self._validate_entities(entities, normalized, diagnostics)
        stats["validator_rejected"] = stats["local_candidates"] + stats["remote_candidates"] - len(entities)

        # Pass 5: Consolidate
        consolidated = self.consolidation.run(entities, normalized)
        diagnostics.extend(consolidated.diagnostics)
        stats["consolidation"] = asdict(consolidated.stats)

        # Pass 6: Map offsets back onto the original text
        final = self._map_to_original(consolidated.entities, normalization, diagnostics)
        retained = [self._to_original(e, normalization) for e in consolidated.component_entities]

        stats["entities"] = len(final)
        stats["duration_ms"] = (time.perf_counter() - started) * 1000
        logger.info(f"Detected {len(final)} entities in {stats['duration_ms']:.1f}ms "
                    f"({len(diagnostics)} diagnostics)")
        return PipelineResult(final, retained, normalization, diagnostics, stats)

    def _validate_entities(
        self,
        entities: List[PIIEntity],
        text: str,
        diagnostics: List[Diagnostic]
    ) -> List[PIIEntity]:
        """
        Drop candidates their type's validator rejects.

        Types without a validator pass unchanged. Malformed spans pass too;
        consolidation drops them with a diagnostic.
        """
        validated = []
        for entity in entities:
            if not is_well_formed(entity, len(text)):
                validated.append(entity)
                continue
            result = self.validators.validate(entity.entity_type, text[entity.start:entity.end])
            if result is None:
                validated.append(entity)
                continue
            if not result.is_valid:
                record_diagnostic(
                    diagnostics, VALIDATOR_REJECTED,
                    f"{entity.entity_type} rejected: {result.reason}",
                    level=logging.DEBUG,
                    log=logger,
                    entity_type=entity.entity_type,
                    start=entity.start,
                    end=entity.end,
                    reason=result.reason,
                )
                continue
            validation = {"confidence": result.confidence, "reason": result.reason}
            if result.metadata:
                validation.update(result.metadata)
            validated.append(replace(
                entity,
                confidence=max(entity.confidence, result.confidence),
                metadata={**entity.metadata, "validation": validation},
            ))
        return validated

    def _to_original(self, entity: PIIEntity, normalization: NormalizationResult) -> PIIEntity:
        start, end = normalization.map_span(entity.start, entity.end)
        metadata = dict(entity.metadata)
        if "components" in metadata:
            metadata["components"] = [self._to_original(c, normalization) for c in metadata["components"]]
        return replace(
            entity,
            start=start,
            end=end,
            text=normalization.original_text[start:end],
            metadata=metadata,
        )

    def _map_to_original(
        self,
        entities: List[PIIEntity],
        normalization: NormalizationResult,
        diagnostics: List[Diagnostic]
    ) -> List[PIIEntity]:
        """
        Map disjoint normalized spans to the original text.

        Two spans splitting one expanded character (e.g. a ligature) would
        both claim it; the later one is trimmed.
        """
        mapped = []
        previous_end = 0
        for entity in entities:
            entity = self._to_original(entity, normalization)
            if entity.start < previous_end:
                if previous_end >= entity.end:
                    record_diagnostic(
                        diagnostics, MALFORMED_ENTITY,
                        f"Dropped {entity.entity_type}: span collapsed when mapped to the original text",
                        log=logger,
                        entity_type=entity.entity_type,
                        start=entity.start,
                        end=entity.end,
                    )
                    continue
                entity.start = previous_end
                entity.text = normalization.original_text[entity.start:entity.end]
            mapped.append(entity)
            previous_end = entity.end
        return mapped
