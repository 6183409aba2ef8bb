"""
Default local pattern recognizers (Presidio PatternRecognizer).

A small, regex-only set covering the structured types that have a validator.
Name/organization/address-component recognizers are model-based and plug in
from outside through RecognizerRegistry.add_local().
"""

from typing import Dict, Iterable, List, Tuple

from presidio_analyzer import Pattern, PatternRecognizer

from .validators import MONTH_NAMES

DEFAULT_LANGUAGES = ("en", "fr", "de")

_MONTHS = "|".join(sorted(MONTH_NAMES, key=len, reverse=True))

# entity_type -> (patterns, context words)
PATTERN_DEFINITIONS: Dict[str, Tuple[List[Pattern], List[str]]] = {
    "EMAIL": (
        [Pattern("email", r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(?:\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,24}\b", 0.6)],
        ["email", "e-mail", "mail", "courriel", "contact"],
    ),
    "PHONE": (
        [
            Pattern("phone_international", r"(?<![\w+])\+\d{2,3}[ ]?\d{2}(?:[ ]?\d{2,3}){2,4}\b", 0.5),
            Pattern("phone_national", r"(?<![\w+])0\d{2}(?:[ ]?\d{2,3}){2,4}\b", 0.4),
        ],
        ["phone", "tel", "telefon", "téléphone", "mobile", "natel", "handy"],
    ),
    "IBAN": (
        [Pattern("iban", r"\b[A-Z]{2}\d{2}(?:[ ]?[A-Z0-9]{4}){3,7}(?:[ ]?[A-Z0-9]{1,4})?\b", 0.5)],
        ["iban", "konto", "account", "compte", "bank"],
    ),
    "SWISS_AVS": (
        [Pattern("swiss_avs", r"\b756[.\s]?\d{4}[.\s]?\d{4}[.\s]?\d{2}\b", 0.6)],
        ["avs", "ahv", "ahvn13", "avs13", "sozialversicherung"],
    ),
    "VAT_NUMBER": (
        [
            Pattern("swiss_uid", r"\bCHE[-\s]?\d{3}[.\s]?\d{3}[.\s]?\d{3}(?:\s?(?:MWST|TVA|IVA))?\b", 0.6),
            Pattern("eu_vat", r"\b(?:(?:DE|FR|IT)\d{8,11}|ATU\d{8})\b", 0.4),
        ],
        ["uid", "mwst", "tva", "iva", "vat", "ust-idnr"],
    ),
    "DATE": (
        [
            Pattern("date_numeric", r"\b\d{1,2}[./]\d{1,2}[./](?:\d{4}|\d{2})\b", 0.4),
            Pattern("date_iso", r"\b\d{4}-\d{2}-\d{2}\b", 0.4),
            Pattern("date_month_name", r"\b\d{1,2}(?:\.|er)?\s+(?:" + _MONTHS + r")\.?\s+\d{4}\b", 0.5),
        ],
        ["date", "datum", "né", "geboren", "born", "birth"],
    ),
    "CREDIT_CARD": (
        [Pattern("credit_card", r"\b(?:\d{4}[ \-]?){3}\d{1,7}\b", 0.3)],
        ["card", "karte", "carte", "visa", "mastercard"],
    ),
}


def build_default_recognizers(languages: Iterable[str] = DEFAULT_LANGUAGES) -> List[PatternRecognizer]:
    """
    Create one PatternRecognizer per entity type and language.

    Args:
        languages: Language codes to serve (Presidio recognizers are single-language)

    Returns:
        List of recognizers ready for RecognizerRegistry.add_local()
    """
    recognizers = []
    for language in languages:
        for entity_type, (patterns, context) in PATTERN_DEFINITIONS.items():
            recognizers.append(PatternRecognizer(
                supported_entity=entity_type,
                name=f"{entity_type.title().replace('_', '')}Recognizer_{language}",
                supported_language=language,
                patterns=patterns,
                context=context,
            ))
    return recognizers
