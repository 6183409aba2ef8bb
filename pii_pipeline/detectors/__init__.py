"""
Detection module - recognizers, validators and the entity record

Local recognizers are Presidio pattern recognizers; remote recognizers are
opt-in HTTP services. Validators confirm candidate entities by type.
"""

from .entity import (
    EntitySource,
    PIIEntity,
    Diagnostic,
    record_diagnostic,
    MALFORMED_ENTITY,
    VALIDATOR_REJECTED,
    REMOTE_FAILURE,
    LOCAL_RECOGNIZER_FAILURE,
)
from .validators import (
    ValidationResult,
    Validator,
    SwissAddressValidator,
    SwissAvsValidator,
    IbanValidator,
    EmailValidator,
    PhoneValidator,
    DateValidator,
    VatNumberValidator,
    CreditCardValidator,
    PostalCodeValidator,
)
from .validator_registry import (
    ValidatorRegistry,
    get_validator_registry,
    get_all_validators,
    get_validator_for_type,
)
from .remote_recognizer import (
    RemoteRecognizerConfig,
    RemoteOutcome,
    RemoteRecognizer,
    HttpRemoteRecognizer,
    build_remote_recognizers,
    run_remote_recognizers,
)
from .recognizer_registry import RecognizerRegistry
from .pattern_recognizers import build_default_recognizers

__all__ = [
    # Entity records
    "EntitySource",
    "PIIEntity",
    "Diagnostic",
    "record_diagnostic",
    "MALFORMED_ENTITY",
    "VALIDATOR_REJECTED",
    "REMOTE_FAILURE",
    "LOCAL_RECOGNIZER_FAILURE",
    # Validators
    "ValidationResult",
    "Validator",
    "SwissAddressValidator",
    "SwissAvsValidator",
    "IbanValidator",
    "EmailValidator",
    "PhoneValidator",
    "DateValidator",
    "VatNumberValidator",
    "CreditCardValidator",
    "PostalCodeValidator",
    "ValidatorRegistry",
    "get_validator_registry",
    "get_all_validators",
    "get_validator_for_type",
    # Recognizers
    "RemoteRecognizerConfig",
    "RemoteOutcome",
    "RemoteRecognizer",
    "HttpRemoteRecognizer",
    "build_remote_recognizers",
    "run_remote_recognizers",
    "RecognizerRegistry",
    "build_default_recognizers",
]
