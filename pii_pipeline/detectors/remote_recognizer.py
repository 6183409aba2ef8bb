"""
Remote recognizers - optional, network-backed entity detection.

A remote recognizer sends the normalized document text to a service and
turns the response into PIIEntity candidates. Every remote recognizer is
disabled by default: unless one is explicitly enabled, no client is created
and no request is made.

Failure policy:
- Each attempt is bounded by the recognizer's own timeout_ms
- Failed attempts are retried up to retry_attempts times
- Timeouts, transport errors and non-2xx responses yield zero entities
- run_remote_recognizers() settles every call; one failure never cancels
  or discards the results of the others
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from ..detection_config import REMOTE_RECOGNIZER_PRIORITY
from ..exceptions import ConfigurationError, RemoteRecognizerError
from .entity import REMOTE_FAILURE, EntitySource, PIIEntity, record_diagnostic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteRecognizerConfig:
    """
    Immutable definition of a remote recognizer.

    Attributes:
        name: Unique recognizer name
        endpoint: URL receiving POST {"text", "language", "entities"}
        supported_entities: Entity types kept from responses (empty = all)
        supported_languages: Languages served (empty = all)
        timeout_ms: Per-attempt timeout
        retry_attempts: Extra attempts after a failure
        priority: Tie-break rank during overlap resolution
        enabled: Off by default; nothing is sent unless True
        credential_env: Environment variable holding a bearer token
        rate_limit_per_minute: Minimum spacing between requests (optional)
        health_path: Path requested by health_check()
    """
    name: str
    endpoint: str = ""
    supported_entities: Tuple[str, ...] = ()
    supported_languages: Tuple[str, ...] = ()
    timeout_ms: int = 5000
    retry_attempts: int = 0
    priority: int = REMOTE_RECOGNIZER_PRIORITY
    enabled: bool = False
    credential_env: Optional[str] = None
    rate_limit_per_minute: Optional[int] = None
    health_path: str = "/health"

    def __post_init__(self):
        if not self.name or not isinstance(self.name, str):
            raise ConfigurationError("Remote recognizer needs a name")
        if not isinstance(self.endpoint, str):
            raise ConfigurationError(f"{self.name}: endpoint must be a string, got {self.endpoint!r}")
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, (int, float)) or self.timeout_ms <= 0:
            raise ConfigurationError(f"{self.name}: timeout_ms must be positive, got {self.timeout_ms!r}")
        if isinstance(self.retry_attempts, bool) or not isinstance(self.retry_attempts, int) or self.retry_attempts < 0:
            raise ConfigurationError(f"{self.name}: retry_attempts must be >= 0, got {self.retry_attempts!r}")
        if isinstance(self.priority, bool) or not isinstance(self.priority, (int, float)):
            raise ConfigurationError(f"{self.name}: priority must be numeric, got {self.priority!r}")
        if not isinstance(self.enabled, bool):
            raise ConfigurationError(f"{self.name}: enabled must be true or false, got {self.enabled!r}")
        if self.credential_env is not None and not isinstance(self.credential_env, str):
            raise ConfigurationError(f"{self.name}: credential_env must name an environment variable")
        rate = self.rate_limit_per_minute
        if rate is not None and (isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0):
            raise ConfigurationError(f"{self.name}: rate_limit_per_minute must be positive, got {rate!r}")
        # Lists coming from JSON become tuples; a bare string is not a list
        for attr in ("supported_entities", "supported_languages"):
            value = getattr(self, attr)
            if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
                raise ConfigurationError(f"{self.name}: {attr} must be a list of strings, got {value!r}")
            object.__setattr__(self, attr, tuple(value))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteRecognizerConfig":
        if not isinstance(data, dict):
            raise ConfigurationError(f"Remote recognizer definition must be an object, got {data!r}")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown remote recognizer settings: {sorted(unknown)}")
        if "name" not in data:
            raise ConfigurationError("Remote recognizer needs a name")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["supported_entities"] = list(self.supported_entities)
        data["supported_languages"] = list(self.supported_languages)
        return data

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def supports_language(self, language: str) -> bool:
        return not self.supported_languages or language in self.supported_languages

    def supports_entity(self, entity_type: str) -> bool:
        return not self.supported_entities or entity_type in self.supported_entities


@dataclass
class RemoteOutcome:
    """Settled result of one remote recognizer call."""
    name: str
    entities: List[PIIEntity] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class RemoteRecognizer(ABC):
    """
    Base class for network-backed recognizers.

    Subclasses implement _analyze(); run() and analyze() add the timeout,
    retry and tagging policy and never raise.
    """

    def __init__(self, config: RemoteRecognizerConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def priority(self) -> int:
        return self.config.priority

    def supports_language(self, language: str) -> bool:
        return self.config.supports_language(language)

    def get_supported_entities(self) -> List[str]:
        return list(self.config.supported_entities)

    @abstractmethod
    async def _analyze(self, text: str, language: str) -> List[PIIEntity]:
        """Perform one remote call; may raise on any failure."""

    async def _health_check(self) -> bool:
        return True

    async def _before_attempt(self):
        """Hook awaited before each attempt, outside its timeout (rate limiting)."""

    async def aclose(self):
        """Release network resources held by the recognizer."""

    async def run(self, text: str, language: str) -> RemoteOutcome:
        """
        Analyze text with timeout and retries, returning the settled outcome.

        Args:
            text: Normalized document text
            language: Language code

        Returns:
            RemoteOutcome; on failure its entities are empty and error is set
        """
        started = time.monotonic()
        error = None
        attempts = 0
        for _ in range(1 + self.config.retry_attempts):
            attempts += 1
            try:
                await self._before_attempt()
                raw = await asyncio.wait_for(self._analyze(text, language), self.config.timeout_seconds)
                entities = self._tag(raw)
                return RemoteOutcome(self.name, entities, None, attempts, (time.monotonic() - started) * 1000)
            except asyncio.TimeoutError:
                error = f"timed out after {self.config.timeout_ms} ms"
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
            logger.debug(f"Remote recognizer {self.name} attempt {attempts} failed: {error}")
        return RemoteOutcome(self.name, [], error, attempts, (time.monotonic() - started) * 1000)

    async def analyze(self, text: str, language: str) -> List[PIIEntity]:
        """Analyze text; any failure yields an empty list."""
        outcome = await self.run(text, language)
        return outcome.entities

    async def health_check(self) -> bool:
        """Advisory reachability check; never raises."""
        try:
            return bool(await asyncio.wait_for(self._health_check(), self.config.timeout_seconds))
        except asyncio.TimeoutError:
            logger.info(f"Health check for {self.name} timed out")
            return False
        except Exception as e:
            logger.info(f"Health check for {self.name} failed: {e}")
            return False

    def _tag(self, entities: Iterable[PIIEntity]) -> List[PIIEntity]:
        tagged = []
        for entity in entities:
            if not self.config.supports_entity(entity.entity_type):
                continue
            entity.source = EntitySource.REMOTE_SERVICE
            entity.metadata["recognizer"] = self.name
            entity.metadata["recognizer_priority"] = self.priority
            tagged.append(entity)
        return tagged

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, enabled={self.enabled})"


class HttpRemoteRecognizer(RemoteRecognizer):
    """
    Remote recognizer speaking the Presidio analyzer REST shape.

    Request: POST endpoint with {"text", "language", "entities"?}.
    Response: a JSON list (or {"entities": [...]}) of
    {"entity_type"|"type", "start", "end", "score"|"confidence"}.

    Args:
        config: Recognizer definition
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    def __init__(self, config: RemoteRecognizerConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        if not config.endpoint:
            raise ConfigurationError(f"{config.name}: HTTP recognizer needs an endpoint")
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._http_loop: Optional[asyncio.AbstractEventLoop] = None
        self._rate_lock: Optional[asyncio.Lock] = None
        self._last_request = 0.0

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        env_name = self.config.credential_env
        if env_name:
            token = os.environ.get(env_name)
            if token:
                headers["Authorization"] = f"Bearer {token}"
            else:
                logger.warning(f"Credential variable {env_name} for {self.name} is not set")
        return headers

    def _client(self) -> httpx.AsyncClient:
        """Pooled client, created on first use in the running event loop."""
        loop = asyncio.get_running_loop()
        if self._http is None or self._http.is_closed or self._http_loop is not loop:
            # Connections of a client from a finished loop cannot be reused
            self._http = httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
            self._http_loop = loop
            self._rate_lock = None
            logger.debug(f"Created HTTP client for {self.name}")
        return self._http

    async def aclose(self):
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None
        self._http_loop = None

    async def _before_attempt(self):
        await self._respect_rate_limit()

    async def _respect_rate_limit(self):
        if not self.config.rate_limit_per_minute:
            return
        if self._rate_lock is None:
            self._rate_lock = asyncio.Lock()
        interval = 60.0 / self.config.rate_limit_per_minute
        async with self._rate_lock:
            wait = self._last_request + interval - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = time.monotonic()

    async def _analyze(self, text: str, language: str) -> List[PIIEntity]:
        payload: Dict[str, Any] = {"text": text, "language": language}
        if self.config.supported_entities:
            payload["entities"] = list(self.config.supported_entities)

        # Credentials are read per request so a rotated token is picked up
        response = await self._client().post(self.config.endpoint, json=payload, headers=self._headers())

        if not response.is_success:
            raise RemoteRecognizerError(
                f"{self.name} returned HTTP {response.status_code}", response.status_code
            )
        return self._parse_response(response.json(), text)

    def _parse_response(self, payload: Any, text: str) -> List[PIIEntity]:
        items = payload.get("entities") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise RemoteRecognizerError(f"{self.name} returned an unexpected payload")

        entities = []
        for item in items:
            if not isinstance(item, dict):
                continue
            entity_type = item.get("entity_type") or item.get("type")
            start, end = item.get("start"), item.get("end")
            if not entity_type or not isinstance(start, int) or not isinstance(end, int):
                logger.debug(f"{self.name}: skipping incomplete result {item!r}")
                continue
            score = item.get("score", item.get("confidence", 0.5))
            # Out-of-range spans are kept; consolidation drops them with a diagnostic
            snippet = text[start:end] if 0 <= start < end <= len(text) else ""
            entities.append(PIIEntity(
                entity_type=entity_type,
                text=snippet,
                start=start,
                end=end,
                confidence=min(1.0, max(0.0, float(score))),
                source=EntitySource.REMOTE_SERVICE,
            ))
        return entities

    async def _health_check(self) -> bool:
        url = httpx.URL(self.config.endpoint).join(self.config.health_path)
        response = await self._client().get(url, headers=self._headers())
        return response.is_success


def build_remote_recognizers(
    configs: Iterable[RemoteRecognizerConfig],
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> List[RemoteRecognizer]:
    """Create HTTP recognizers for every configured definition (enabled or not)."""
    return [HttpRemoteRecognizer(config, transport=transport) for config in configs]


async def run_remote_recognizers(
    recognizers: Iterable[RemoteRecognizer],
    text: str,
    language: str,
    timeout: Optional[float] = None,
    diagnostics: Optional[list] = None
) -> List[PIIEntity]:
    """
    Fan out to every enabled recognizer supporting the language and settle all.

    With no enabled recognizer this returns immediately without any I/O.

    Args:
        recognizers: Candidate recognizers
        text: Normalized document text
        language: Language code
        timeout: Overall bound in seconds for each recognizer (None: own timeout only)
        diagnostics: List receiving a diagnostic per failed recognizer

    Returns:
        Union of the successful recognizers' entities
    """
    active = [r for r in recognizers if r.enabled and r.supports_language(language)]
    if not active:
        return []

    async def settle(recognizer: RemoteRecognizer) -> RemoteOutcome:
        if timeout is None:
            return await recognizer.run(text, language)
        try:
            return await asyncio.wait_for(recognizer.run(text, language), timeout)
        except asyncio.TimeoutError:
            return RemoteOutcome(recognizer.name, [], f"exceeded overall timeout of {timeout}s", 0, timeout * 1000)

    logger.debug(f"Running {len(active)} remote recognizers: {[r.name for r in active]}")
    outcomes = await asyncio.gather(*(settle(r) for r in active), return_exceptions=True)

    entities: List[PIIEntity] = []
    for recognizer, outcome in zip(active, outcomes):
        if isinstance(outcome, BaseException):
            outcome = RemoteOutcome(recognizer.name, [], f"{type(outcome).__name__}: {outcome}")
        if not outcome.ok:
            record_diagnostic(
                diagnostics, REMOTE_FAILURE,
                f"Remote recognizer {recognizer.name} contributed no entities ({outcome.error})",
                log=logger,
                recognizer=recognizer.name,
                error=outcome.error,
                attempts=outcome.attempts,
                elapsed_ms=round(outcome.elapsed_ms, 1),
            )
            continue
        entities.extend(outcome.entities)
    return entities
