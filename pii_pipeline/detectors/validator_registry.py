"""
Validator Registry - one shared, immutable set of validators per process.

The set is built lazily on first access, exposed as a tuple, and indexed by
entity type in a read-only mapping built together with the tuple. Tests get
isolation through _reset_validators_cache(); production code never resets.
"""

import logging
import threading
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from .validators import (
    CreditCardValidator,
    DateValidator,
    EmailValidator,
    IbanValidator,
    PhoneValidator,
    SwissAddressValidator,
    SwissAvsValidator,
    ValidationResult,
    Validator,
    VatNumberValidator,
)

logger = logging.getLogger(__name__)


def default_validators() -> Sequence[Validator]:
    """
    Validators registered by default, in lookup order.

    PostalCodeValidator is intentionally absent (see its docstring).
    """
    return (
        SwissAddressValidator(),
        SwissAvsValidator(),
        IbanValidator(),
        EmailValidator(),
        PhoneValidator(),
        DateValidator(),
        VatNumberValidator(),
        CreditCardValidator(),
    )


class ValidatorRegistry:
    """
    Lazily-initialized, immutable validator set with a single construction point.

    Args:
        factory: Callable returning the validators to register
            (default: default_validators)
    """

    def __init__(self, factory: Callable[[], Sequence[Validator]] = default_validators):
        self._factory = factory
        self._lock = threading.Lock()
        self._validators: Optional[Tuple[Validator, ...]] = None
        self._by_type: Optional[Mapping[str, Validator]] = None

    def _build(self):
        with self._lock:
            if self._validators is not None:
                return
            validators = tuple(self._factory())
            by_type: Dict[str, Validator] = {}
            for validator in validators:
                # First registration wins a type collision
                if validator.entity_type in by_type:
                    logger.warning(
                        f"Validator {validator.name} ignored: {validator.entity_type} "
                        f"already handled by {by_type[validator.entity_type].name}"
                    )
                    continue
                by_type[validator.entity_type] = validator
            self._by_type = MappingProxyType(by_type)
            self._validators = validators
            logger.debug(f"Built validator registry with {len(validators)} validators")

    def get_all(self) -> Tuple[Validator, ...]:
        """Get every registered validator (built on first call)"""
        if self._validators is None:
            self._build()
        return self._validators

    def get(self, entity_type: str) -> Optional[Validator]:
        """Get the validator for an entity type, or None"""
        if self._by_type is None:
            self._build()
        return self._by_type.get(entity_type)

    @property
    def supported_types(self) -> Tuple[str, ...]:
        if self._by_type is None:
            self._build()
        return tuple(self._by_type)

    def validate(self, entity_type: str, text: str) -> Optional[ValidationResult]:
        """
        Validate text as the given entity type.

        Returns:
            ValidationResult, or None when no validator handles the type
        """
        validator = self.get(entity_type)
        if validator is None:
            return None
        return validator.validate(text)

    def _reset(self):
        """Discard the cached set; the next access rebuilds it (tests only)"""
        with self._lock:
            self._validators = None
            self._by_type = None


# Process-wide registry
_registry = ValidatorRegistry()


def get_validator_registry() -> ValidatorRegistry:
    """Get the process-wide validator registry"""
    return _registry


def get_all_validators() -> Tuple[Validator, ...]:
    """Get the shared, immutable validator sequence"""
    return _registry.get_all()


def get_validator_for_type(entity_type: str) -> Optional[Validator]:
    """O(1) lookup of the validator handling an entity type"""
    return _registry.get(entity_type)


def _reset_validators_cache():
    """Test-only: force the shared validator set to be rebuilt on next access"""
    _registry._reset()
