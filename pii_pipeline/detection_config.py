#!/usr/bin/env python3
"""
Detection Config - Manages entity priorities, normalizer toggles, address
consolidation settings and remote recognizer definitions
"""

import copy
import json
import logging
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, List, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Pipeline version - single source of truth
VERSION = "0.4.0"

# Consolidation priority per entity type (higher wins an overlap)
# Structured IDs with checksums > contact data > addresses > names > generic values
DEFAULT_ENTITY_PRIORITY = {
    "SWISS_AVS": 100,       # 756.xxxx.xxxx.xx, EAN-13 checksum
    "IBAN": 95,
    "QR_REFERENCE": 90,
    "VAT_NUMBER": 85,
    "CREDIT_CARD": 84,
    "EMAIL": 80,
    "PHONE": 75,
    "PAYMENT_REF": 70,
    "INVOICE_NUMBER": 65,
    "SWISS_ADDRESS": 60,
    "EU_ADDRESS": 58,
    "ADDRESS": 55,
    "PERSON_NAME": 50,
    "PERSON": 48,
    "ORGANIZATION": 45,
    "VENDOR_NAME": 43,
    "SENDER": 40,
    "RECIPIENT": 38,
    "IDENTIFIER": 30,       # Generic customer/reference IDs
    # Address components (merged into ADDRESS by the consolidation pass)
    "STREET_NAME": 26,
    "POSTAL_CODE": 25,
    "CITY": 24,
    "STREET_NUMBER": 23,
    "REGION": 22,
    "COUNTRY": 21,
    "DATE": 20,
    "AMOUNT": 18,
    "LOCATION": 15,
    "NUMBER": 5,
    "UNKNOWN": 0,
}

# Entity types that the address consolidation stage groups together
ADDRESS_COMPONENT_TYPES = (
    "STREET_NAME",
    "STREET_NUMBER",
    "POSTAL_CODE",
    "CITY",
    "COUNTRY",
    "REGION",
)

NORMALIZATION_FORMS = ("NFC", "NFD", "NFKC", "NFKD")
CONFIDENCE_AGGREGATES = ("min", "mean", "length_weighted")
LINKING_STRATEGIES = ("exact", "normalized", "fuzzy")

# Recognizer-specific variants linked under one logical type
LINKING_BASE_TYPES = {
    "SWISS_ADDRESS": "ADDRESS",
    "EU_ADDRESS": "ADDRESS",
    "PERSON_NAME": "PERSON",
}

# Locally registered recognizers without an explicit priority get this value.
# Remote recognizers default lower so local findings win ties.
LOCAL_RECOGNIZER_PRIORITY = 50
REMOTE_RECOGNIZER_PRIORITY = 10

# Text normalizer toggles
DEFAULT_NORMALIZER_OPTIONS = {
    "normalize_unicode": True,
    "normalization_form": "NFKC",   # Compatibility composition: fullwidth -> ASCII
    "normalize_whitespace": True,
    "handle_emails": True,          # "(at)" / "[dot]" de-obfuscation
    "handle_phones": True,          # "+41 (0)79" and separator canonicalization
    "supported_locales": ["en", "fr", "de"],
}

# Consolidation pass settings
DEFAULT_CONSOLIDATION = {
    "enable_overlap_resolution": True,
    "enable_address_consolidation": True,
    "enable_entity_linking": True,
    "address_max_gap": 50,                # Characters between two components
    "retain_components": False,           # Keep merged components (debugging)
    "min_address_components": 2,
    "confidence_aggregate": "min",
    "min_consolidation_confidence": 0.5,
    "linking_strategy": "normalized",
}

# Remote recognizers (all disabled by default - no network traffic unless configured)
# Each entry: name, endpoint, supported_entities, supported_languages,
# timeout_ms, retry_attempts, priority, enabled, credential_env,
# rate_limit_per_minute, health_path
DEFAULT_REMOTE_RECOGNIZERS: List[Dict[str, Any]] = []

# Overall time limit for the remote fan-out of one document
DEFAULT_REMOTE_TIMEOUT_SECONDS = 10.0


class DetectionConfig:
    """
    Manages pipeline settings with JSON persistence.

    Typed, immutable views of the settings are produced by
    normalizer_options(), consolidation_config() and
    remote_recognizer_configs(); building them is also how the settings are
    validated.
    """

    def __init__(self, config_path: str = None):
        """
        Initialize config manager

        Args:
            config_path: Path to config file (default: ~/.pii_pipeline/detection_config.json)

        Raises:
            ConfigurationError: If the saved file is unreadable or holds invalid values
        """
        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = Path.home() / ".pii_pipeline" / "detection_config.json"

        self.config: Dict[str, Any] = {
            "entity_priority": DEFAULT_ENTITY_PRIORITY.copy(),
            "normalizer": copy.deepcopy(DEFAULT_NORMALIZER_OPTIONS),
            "consolidation": DEFAULT_CONSOLIDATION.copy(),
            "remote_recognizers": [dict(r) for r in DEFAULT_REMOTE_RECOGNIZERS],
            "remote_timeout_seconds": DEFAULT_REMOTE_TIMEOUT_SECONDS,
            "created_at": datetime.now().isoformat(),
            "updated_at": datetime.now().isoformat(),
        }

        self._load_config()
        self.validate()

    def _load_config(self):
        """Load config from file if it exists"""
        if not self.config_path.exists():
            return
        try:
            with open(self.config_path, 'r') as f:
                saved = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigurationError(f"Cannot read config file {self.config_path}: {e}") from e

        if not isinstance(saved, dict):
            raise ConfigurationError(f"Config file {self.config_path} must hold a JSON object")

        for section, expected in (("entity_priority", dict), ("normalizer", dict),
                                  ("consolidation", dict), ("remote_recognizers", list)):
            if section in saved and not isinstance(saved[section], expected):
                raise ConfigurationError(
                    f"Config section {section} must be a JSON {'object' if expected is dict else 'array'}"
                )

        # Merge with defaults (in case new entity types or options were added)
        self.config["entity_priority"] = {**DEFAULT_ENTITY_PRIORITY, **saved.get("entity_priority", {})}
        self.config["normalizer"] = {**copy.deepcopy(DEFAULT_NORMALIZER_OPTIONS), **saved.get("normalizer", {})}
        self.config["consolidation"] = {**DEFAULT_CONSOLIDATION, **saved.get("consolidation", {})}
        self.config["remote_recognizers"] = list(saved.get("remote_recognizers", []))
        self.config["remote_timeout_seconds"] = saved.get(
            "remote_timeout_seconds", DEFAULT_REMOTE_TIMEOUT_SECONDS
        )
        self.config["created_at"] = saved.get("created_at", self.config["created_at"])
        self.config["updated_at"] = saved.get("updated_at", self.config["updated_at"])
        logger.info(f"Loaded detection config from {self.config_path}")

    def validate(self):
        """
        Check every section by building its typed view.

        Raises:
            ConfigurationError: On the first invalid value
        """
        for entity_type, priority in self.config["entity_priority"].items():
            if isinstance(priority, bool) or not isinstance(priority, (int, float)):
                raise ConfigurationError(
                    f"Priority for {entity_type} must be numeric, got {priority!r}"
                )
        timeout = self.config.get("remote_timeout_seconds")
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            raise ConfigurationError(f"remote_timeout_seconds must be positive, got {timeout!r}")

        self.normalizer_options()
        self.consolidation_config()
        names = [c.name for c in self.remote_recognizer_configs()]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Duplicate remote recognizer names: {names}")

    def save(self):
        """Save config to file"""
        self.config["updated_at"] = datetime.now().isoformat()
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(self.config, f, indent=2)

    # -- Entity priorities -------------------------------------------------

    def get_entity_priority(self, entity_type: str) -> int:
        """
        Get consolidation priority for an entity type

        Args:
            entity_type: Entity type (e.g., "PERSON", "IBAN")

        Returns:
            Priority (unknown types rank lowest)
        """
        return self.config["entity_priority"].get(entity_type, 0)

    def set_entity_priority(self, entity_type: str, priority: int):
        """Set consolidation priority for an entity type"""
        if isinstance(priority, bool) or not isinstance(priority, (int, float)):
            raise ConfigurationError(f"Priority for {entity_type} must be numeric, got {priority!r}")
        self.config["entity_priority"][entity_type] = priority
        self.save()

    def get_all_priorities(self) -> Dict[str, int]:
        """Get all entity priorities"""
        return self.config["entity_priority"].copy()

    # -- Normalizer --------------------------------------------------------

    def get_normalizer_settings(self) -> Dict[str, Any]:
        """Get raw normalizer toggles"""
        return dict(self.config["normalizer"])

    def set_normalizer_option(self, option: str, value: Any):
        """Set a single normalizer toggle, validating before it is persisted"""
        if option not in DEFAULT_NORMALIZER_OPTIONS:
            raise ConfigurationError(f"Unknown normalizer option: {option}")
        previous = self.config["normalizer"].get(option)
        self.config["normalizer"][option] = value
        try:
            self.normalizer_options()
        except Exception:
            self.config["normalizer"][option] = previous
            raise
        self.save()

    def normalizer_options(self):
        """Build the immutable NormalizerOptions for the text normalizer"""
        from .preprocessing.text_normalizer import NormalizerOptions

        settings = self.config["normalizer"]
        locales = settings["supported_locales"]
        if not isinstance(locales, (list, tuple)):
            raise ConfigurationError(f"supported_locales must be a list, got {locales!r}")
        return NormalizerOptions(
            normalize_unicode=bool(settings["normalize_unicode"]),
            normalization_form=settings["normalization_form"],
            normalize_whitespace=bool(settings["normalize_whitespace"]),
            handle_emails=bool(settings["handle_emails"]),
            handle_phones=bool(settings["handle_phones"]),
            supported_locales=tuple(locales),
        )

    # -- Consolidation -----------------------------------------------------

    def get_consolidation_settings(self) -> Dict[str, Any]:
        """Get raw consolidation settings"""
        return self.config["consolidation"].copy()

    def set_consolidation_setting(self, key: str, value: Any):
        """Set a single consolidation setting, validating before it is persisted"""
        if key not in DEFAULT_CONSOLIDATION:
            raise ConfigurationError(f"Unknown consolidation setting: {key}")
        previous = self.config["consolidation"].get(key)
        self.config["consolidation"][key] = value
        try:
            self.consolidation_config()
        except Exception:
            self.config["consolidation"][key] = previous
            raise
        self.save()

    def consolidation_config(self):
        """Build the immutable ConsolidationConfig for the consolidation pass"""
        from .postprocessing.consolidation import ConsolidationConfig

        return ConsolidationConfig.from_settings(
            self.config["consolidation"],
            entity_priority=self.config["entity_priority"],
        )

    # -- Remote recognizers ------------------------------------------------

    def get_remote_recognizers(self) -> List[Dict[str, Any]]:
        """Get raw remote recognizer definitions"""
        return [dict(r) for r in self.config["remote_recognizers"]]

    def add_remote_recognizer(self, definition: Dict[str, Any]):
        """
        Register a remote recognizer definition.

        Credentials are referenced by environment variable name
        (``credential_env``); raw secrets are never stored here.

        Args:
            definition: Recognizer fields (name and endpoint required)
        """
        from .detectors.remote_recognizer import RemoteRecognizerConfig

        config = RemoteRecognizerConfig.from_dict(definition)
        if any(r.get("name") == config.name for r in self.config["remote_recognizers"]):
            raise ConfigurationError(f"Remote recognizer already configured: {config.name}")
        self.config["remote_recognizers"].append(config.to_dict())
        self.save()

    def set_remote_recognizer_enabled(self, name: str, enabled: bool):
        """Enable or disable a configured remote recognizer"""
        for definition in self.config["remote_recognizers"]:
            if definition.get("name") == name:
                definition["enabled"] = bool(enabled)
                logger.info(f"Remote recognizer {name} {'enabled' if enabled else 'disabled'}")
                self.save()
                return
        raise ConfigurationError(f"Unknown remote recognizer: {name}")

    def remote_recognizer_configs(self) -> list:
        """Build immutable RemoteRecognizerConfig objects for every definition"""
        from .detectors.remote_recognizer import RemoteRecognizerConfig

        return [RemoteRecognizerConfig.from_dict(d) for d in self.config["remote_recognizers"]]

    def get_remote_timeout(self) -> float:
        """Overall remote fan-out time limit in seconds"""
        return float(self.config.get("remote_timeout_seconds", DEFAULT_REMOTE_TIMEOUT_SECONDS))

    def to_dict(self) -> Dict[str, Any]:
        """Export current configuration as dictionary"""
        return {
            "version": VERSION,
            "config_path": str(self.config_path),
            "entity_priority": self.get_all_priorities(),
            "normalizer": self.get_normalizer_settings(),
            "consolidation": self.get_consolidation_settings(),
            "remote_recognizers": self.get_remote_recognizers(),
            "remote_timeout_seconds": self.get_remote_timeout(),
        }


# Global config instance
_config_instance: Optional[DetectionConfig] = None


def get_config() -> DetectionConfig:
    """Get the global config instance"""
    global _config_instance
    if _config_instance is None:
        _config_instance = DetectionConfig()
    return _config_instance


def reset_config():
    """Discard the global config instance (used by tests)"""
    global _config_instance
    _config_instance = None
