"""
Entity and diagnostic records shared by every pipeline stage.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class EntitySource(str, Enum):
    """Provenance of an entity."""
    LOCAL_PATTERN = "local-pattern"
    LOCAL_MODEL = "local-model"
    REMOTE_SERVICE = "remote-service"
    CONSOLIDATED = "consolidated"


@dataclass
class PIIEntity:
    """
    Represents a detected PII entity.

    Attributes:
        entity_type: The type of PII (e.g., "EMAIL", "PHONE", "STREET_NAME")
        text: The detected text
        start: Start position in the text the entity refers to
        end: End position (exclusive)
        confidence: Detection confidence score (0.0 to 1.0)
        source: Which kind of recognizer produced it
        metadata: Open key/value map ("logical_id", "components", "recognizer", ...)
        entity_id: Opaque identifier used for back-references
    """
    entity_type: str  # e.g., "EMAIL", "PHONE", "SWISS_AVS"
    text: str
    start: int
    end: int
    confidence: float
    source: EntitySource = EntitySource.LOCAL_PATTERN
    metadata: Dict[str, Any] = field(default_factory=dict)
    entity_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def logical_id(self) -> Optional[str]:
        return self.metadata.get("logical_id")

    def overlaps(self, other: "PIIEntity") -> bool:
        """True if the half-open spans intersect (containment included)."""
        return self.start < other.end and self.end > other.start

    def to_dict(self) -> Dict[str, Any]:
        metadata = dict(self.metadata)
        if "components" in metadata:
            metadata["components"] = [c.to_dict() for c in metadata["components"]]
        return {
            "id": self.entity_id,
            "entity_type": self.entity_type,
            "text": self.text,
            "start": self.start,
            "end": self.end,
            "confidence": round(self.confidence, 4),
            # External candidates may carry a plain string
            "source": getattr(self.source, "value", self.source),
            "metadata": metadata,
        }


# Diagnostic kinds
MALFORMED_ENTITY = "malformed_entity"
VALIDATOR_REJECTED = "validator_rejected"
REMOTE_FAILURE = "remote_failure"
LOCAL_RECOGNIZER_FAILURE = "local_recognizer_failure"


@dataclass
class Diagnostic:
    """
    Structured warning about something the pipeline skipped.

    Attributes:
        kind: One of MALFORMED_ENTITY, VALIDATOR_REJECTED, REMOTE_FAILURE,
            LOCAL_RECOGNIZER_FAILURE
        message: Human-readable summary
        details: Machine-readable context (entity fields, recognizer name, error)
    """
    kind: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": dict(self.details)}


def record_diagnostic(
    diagnostics: Optional[list],
    kind: str,
    message: str,
    level: int = logging.WARNING,
    log: Optional[logging.Logger] = None,
    **details
) -> Diagnostic:
    """
    Create a diagnostic, log it with the structured payload and append it.

    Args:
        diagnostics: List to append to (ignored when None)
        kind: Diagnostic kind
        message: Human-readable summary
        level: Logging level (validator rejections are DEBUG)
        log: Logger of the calling module (default: this module)
        **details: Extra context

    Returns:
        The recorded Diagnostic
    """
    diagnostic = Diagnostic(kind, message, details)
    (log or logger).log(level, f"{kind}: {message}", extra={"diagnostic": diagnostic.to_dict()})
    if diagnostics is not None:
        diagnostics.append(diagnostic)
    return diagnostic
