"""
Recognizer Registry - local (Presidio) and remote recognizers.

Local recognizers live in a Presidio RecognizerRegistry and run
synchronously over the normalized text. Remote recognizers are held
separately and only ever run through run_remote_recognizers(), which is a
no-op unless one of them is enabled.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Union

from presidio_analyzer import EntityRecognizer, PatternRecognizer
from presidio_analyzer import RecognizerRegistry as PresidioRecognizerRegistry

from ..detection_config import LOCAL_RECOGNIZER_PRIORITY
from .entity import LOCAL_RECOGNIZER_FAILURE, EntitySource, PIIEntity, record_diagnostic
from .remote_recognizer import RemoteRecognizer, run_remote_recognizers

logger = logging.getLogger(__name__)

Recognizer = Union[EntityRecognizer, RemoteRecognizer]


def recognizer_priority(recognizer: Recognizer) -> int:
    """Priority of a recognizer; Presidio recognizers may carry a ``priority`` attribute."""
    if isinstance(recognizer, RemoteRecognizer):
        return recognizer.priority
    return getattr(recognizer, "priority", LOCAL_RECOGNIZER_PRIORITY)


class RecognizerRegistry:
    """
    Holds local and remote recognizers and exposes discovery by entity type
    and language.

    Args:
        local_recognizers: Presidio recognizers to register
        remote_recognizers: Remote recognizers to register
    """

    def __init__(
        self,
        local_recognizers: Optional[Iterable[EntityRecognizer]] = None,
        remote_recognizers: Optional[Iterable[RemoteRecognizer]] = None
    ):
        self._local = PresidioRecognizerRegistry()
        self._remote: List[RemoteRecognizer] = []
        for recognizer in local_recognizers or []:
            self.add_local(recognizer)
        for recognizer in remote_recognizers or []:
            self.add_remote(recognizer)

    @property
    def local_recognizers(self) -> List[EntityRecognizer]:
        return list(self._local.recognizers)

    @property
    def remote_recognizers(self) -> List[RemoteRecognizer]:
        return list(self._remote)

    def add_local(self, recognizer: EntityRecognizer):
        """Register a Presidio recognizer"""
        self._local.add_recognizer(recognizer)

    def add_remote(self, recognizer: RemoteRecognizer):
        """
        Register a remote recognizer.

        Raises:
            ValueError: If a remote recognizer with the same name exists
        """
        if any(r.name == recognizer.name for r in self._remote):
            raise ValueError(f"Remote recognizer already registered: {recognizer.name}")
        self._remote.append(recognizer)
        if recognizer.enabled:
            logger.info(f"Remote recognizer {recognizer.name} enabled ({recognizer.config.endpoint})")

    def get_local(self, language: str) -> List[EntityRecognizer]:
        """Local recognizers for a language, highest priority first"""
        recognizers = [r for r in self._local.recognizers if r.supported_language == language]
        return sorted(recognizers, key=lambda r: (-recognizer_priority(r), r.name))

    def get_enabled_remote(self, language: Optional[str] = None) -> List[RemoteRecognizer]:
        """Enabled remote recognizers, optionally filtered by language"""
        return [
            r for r in self._remote
            if r.enabled and (language is None or r.supports_language(language))
        ]

    def get_by_language(self, language: str) -> List[Recognizer]:
        """All recognizers (local, then remote) that serve a language"""
        remote = [r for r in self._remote if r.supports_language(language)]
        return self.get_local(language) + sorted(remote, key=lambda r: (-r.priority, r.name))

    def get_by_entity_type(self, entity_type: str) -> List[Recognizer]:
        """All recognizers that can produce an entity type"""
        local = [r for r in self._local.recognizers if entity_type in r.supported_entities]
        remote = [r for r in self._remote if r.config.supports_entity(entity_type)]
        return sorted(local + remote, key=lambda r: (-recognizer_priority(r), r.name))

    def get_registered_recognizers(self) -> List[str]:
        """
        Get list of all registered recognizer names.

        Returns:
            Sorted list of recognizer names
        """
        return sorted(set(r.name for r in self._local.recognizers) | set(r.name for r in self._remote))

    def get_recognizers_for_entity(self, entity_type: str) -> List[str]:
        """Names of recognizers that support a specific entity type"""
        return sorted(set(r.name for r in self.get_by_entity_type(entity_type)))

    def analyze_local(
        self,
        text: str,
        language: str,
        diagnostics: Optional[list] = None
    ) -> List[PIIEntity]:
        """
        Run every local recognizer for the language over the text.

        A failing recognizer is skipped and recorded; the others still run.

        Args:
            text: Normalized document text
            language: Language code
            diagnostics: List receiving LOCAL_RECOGNIZER_FAILURE diagnostics

        Returns:
            Candidate entities over the given text
        """
        entities = []
        for recognizer in self.get_local(language):
            try:
                results = recognizer.analyze(
                    text=text,
                    entities=recognizer.supported_entities,
                    nlp_artifacts=None,
                )
            except Exception as e:
                record_diagnostic(
                    diagnostics, LOCAL_RECOGNIZER_FAILURE,
                    f"Recognizer {recognizer.name} failed: {e}",
                    log=logger,
                    recognizer=recognizer.name,
                    error=f"{type(e).__name__}: {e}",
                )
                continue

            source = EntitySource.LOCAL_PATTERN if isinstance(recognizer, PatternRecognizer) else EntitySource.LOCAL_MODEL
            priority = recognizer_priority(recognizer)
            for result in results or []:
                metadata = {"recognizer": recognizer.name, "recognizer_priority": priority}
                explanation = getattr(result, "analysis_explanation", None)
                pattern_name = getattr(explanation, "pattern_name", None) if explanation else None
                if pattern_name:
                    metadata["pattern_name"] = pattern_name
                entities.append(PIIEntity(
                    entity_type=result.entity_type,
                    text=text[result.start:result.end],
                    start=result.start,
                    end=result.end,
                    confidence=result.score,
                    source=source,
                    metadata=metadata,
                ))
        return entities

    async def analyze_remote(
        self,
        text: str,
        language: str,
        timeout: Optional[float] = None,
        diagnostics: Optional[list] = None
    ) -> List[PIIEntity]:
        """Fan out to enabled remote recognizers (no-op when none is enabled)"""
        return await run_remote_recognizers(self._remote, text, language, timeout, diagnostics)

    async def health_check(self) -> Dict[str, bool]:
        """
        Health-check every enabled remote recognizer.

        Advisory only: used when validating configuration, never while
        detecting.
        """
        enabled = self.get_enabled_remote()
        if not enabled:
            return {}
        results = await asyncio.gather(*(r.health_check() for r in enabled))
        return {r.name: ok for r, ok in zip(enabled, results)}

    async def aclose(self):
        """Close the network clients held by remote recognizers"""
        if self._remote:
            await asyncio.gather(*(r.aclose() for r in self._remote))
