"""
PII Validation using External Libraries

Format/structure validators, one per entity type. Each validator is stateless
and exposes ``entity_type`` and ``validate(text) -> ValidationResult``; a
rejected candidate is a negative result, never an exception.

Libraries used:
- python-stdnum: IBAN, Swiss AVS (EAN-13), Swiss UID/VAT, EU VAT, Luhn
- phonenumbers: International phone number validation

Usage:
    from pii_pipeline.detectors.validators import IbanValidator

    if IbanValidator().validate("CH93 0076 2011 6238 5295 7"):
        print("Valid IBAN")
"""

import calendar
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberType
from stdnum import iban as stdnum_iban
from stdnum import luhn
from stdnum.ch import ssn as ch_ssn
from stdnum.ch import uid as ch_uid
from stdnum.eu import vat as eu_vat

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIDENCE LEVELS
# =============================================================================

CONFIDENCE_CHECKSUM_VALID = 0.95   # Checksum verified (IBAN, AVS, UID)
CONFIDENCE_FORMAT_VALID = 0.90     # Strict format, no checksum available
CONFIDENCE_STANDARD = 0.85
CONFIDENCE_KNOWN_VALID = 0.82      # Matches a known value list (cities)
CONFIDENCE_MODERATE = 0.75
CONFIDENCE_WEAK = 0.50
CONFIDENCE_INVALID_FORMAT = 0.40
CONFIDENCE_FAILED = 0.30           # Right shape, failed checksum or calendar
CONFIDENCE_FALSE_POSITIVE = 0.20   # Looks valid but known false-positive shape


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of validating one candidate.

    Attributes:
        is_valid: True if the candidate passes validation
        confidence: Confidence in the verdict (see CONFIDENCE_* levels)
        reason: Short human-readable explanation
        metadata: Normalized forms and extracted parts (optional)
    """
    is_valid: bool
    confidence: float
    reason: str = ""
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.is_valid


def _valid(confidence: float, reason: str, **metadata) -> ValidationResult:
    return ValidationResult(True, confidence, reason, metadata or None)


def _invalid(confidence: float, reason: str) -> ValidationResult:
    return ValidationResult(False, confidence, reason)


class Validator(ABC):
    """
    Base class for entity validators.

    Subclasses implement _validate() on stripped text. validate() never
    raises: non-string input and unexpected library errors count as
    non-matching.
    """

    entity_type: str = ""
    name: str = ""

    def validate(self, text: str, context: Optional[str] = None) -> ValidationResult:
        if not isinstance(text, str):
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Not a string")
        candidate = text.strip()
        if not candidate:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Empty candidate")
        try:
            return self._validate(candidate, context)
        except Exception as e:
            logger.debug(f"{self.name} rejected {candidate!r} after error: {e}")
            return _invalid(CONFIDENCE_FAILED, f"Validation error: {type(e).__name__}")

    @abstractmethod
    def _validate(self, text: str, context: Optional[str]) -> ValidationResult:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(entity_type={self.entity_type!r})"


# =============================================================================
# SWISS SOCIAL SECURITY NUMBER (AVS/AHV)
# =============================================================================

class SwissAvsValidator(Validator):
    """756.XXXX.XXXX.XX, EAN-13 check digit."""

    entity_type = "SWISS_AVS"
    name = "SwissAvsValidator"

    def _validate(self, text, context):
        compact = re.sub(r'[\s.\-]', '', text)
        if not re.fullmatch(r'756\d{10}', compact):
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Expected 13 digits starting with 756")
        if not ch_ssn.is_valid(compact):
            return _invalid(CONFIDENCE_FAILED, "EAN-13 checksum mismatch")
        return _valid(CONFIDENCE_CHECKSUM_VALID, "Valid AVS number",
                      compact=compact, formatted=ch_ssn.format(compact))


# =============================================================================
# IBAN VALIDATION
# =============================================================================

IBAN_MIN_LENGTH = 15
IBAN_MAX_LENGTH = 34


class IbanValidator(Validator):
    """Country length and ISO 13616 mod-97 via python-stdnum."""

    entity_type = "IBAN"
    name = "IbanValidator"

    def _validate(self, text, context):
        compact = re.sub(r'[\s\-]', '', text).upper()
        if not IBAN_MIN_LENGTH <= len(compact) <= IBAN_MAX_LENGTH:
            return _invalid(CONFIDENCE_INVALID_FORMAT, f"IBAN length {len(compact)} out of range")
        if not re.fullmatch(r'[A-Z]{2}\d{2}[A-Z0-9]+', compact):
            return _invalid(CONFIDENCE_INVALID_FORMAT, "IBAN must start with country code and check digits")
        if not stdnum_iban.is_valid(compact):
            return _invalid(CONFIDENCE_FAILED, "IBAN checksum or country length mismatch")
        return _valid(CONFIDENCE_CHECKSUM_VALID, "Valid IBAN",
                      country=compact[:2], compact=compact, formatted=stdnum_iban.format(compact))


# =============================================================================
# EMAIL VALIDATION
# =============================================================================

EMAIL_MAX_LENGTH = 254

# Simplified RFC 5322: dot-atom local part, hostname labels
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


class EmailValidator(Validator):
    entity_type = "EMAIL"
    name = "EmailValidator"

    def _validate(self, text, context):
        if len(text) > EMAIL_MAX_LENGTH:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Email too long")
        if not EMAIL_PATTERN.match(text):
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Not an email address")
        if '..' in text:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Consecutive dots")
        local, domain = text.rsplit('@', 1)
        if local.startswith('.') or local.endswith('.'):
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Local part starts or ends with a dot")
        tld = domain.rsplit('.', 1)[-1] if '.' in domain else ''
        if len(tld) < 2 or not tld.isalpha():
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Missing or invalid top-level domain")
        return _valid(CONFIDENCE_FORMAT_VALID, "Valid email format", domain=domain.lower())


# =============================================================================
# PHONE NUMBER VALIDATION
# =============================================================================

PHONE_MAX_LENGTH = 20
PHONE_MIN_DIGITS = 9
PHONE_MAX_DIGITS = 15
PHONE_DEFAULT_REGION = "CH"


class PhoneValidator(Validator):
    """
    Validate a phone number using the phonenumbers library.

    National numbers (leading 0) are parsed against ``default_region``.
    Mobile numbers score higher than fixed lines.
    """

    entity_type = "PHONE"
    name = "PhoneValidator"

    def __init__(self, default_region: str = PHONE_DEFAULT_REGION):
        self.default_region = default_region

    def _validate(self, text, context):
        if len(text) > PHONE_MAX_LENGTH:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Phone number too long")
        digits = re.sub(r'\D', '', text)
        if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
            return _invalid(CONFIDENCE_INVALID_FORMAT, f"{len(digits)} digits, expected 9-15")

        try:
            parsed = phonenumbers.parse(text, self.default_region)
        except NumberParseException:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Unparseable phone number")

        if not phonenumbers.is_valid_number(parsed):
            return _invalid(CONFIDENCE_FAILED, "Not a valid number for its region")

        num_type = phonenumbers.number_type(parsed)
        is_mobile = num_type in (PhoneNumberType.MOBILE, PhoneNumberType.FIXED_LINE_OR_MOBILE)
        return _valid(
            CONFIDENCE_FORMAT_VALID if is_mobile else CONFIDENCE_MODERATE,
            "Valid mobile number" if is_mobile else "Valid phone number",
            region=phonenumbers.region_code_for_number(parsed),
            e164=phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164),
            mobile=is_mobile,
        )


# =============================================================================
# DATE VALIDATION
# =============================================================================

# Month names and abbreviations (EN, DE, FR)
MONTH_NAMES = {
    # English
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
    # German
    "januar": 1, "jänner": 1, "februar": 2, "märz": 3, "maerz": 3, "mai": 5,
    "juni": 6, "juli": 7, "oktober": 10, "okt": 10, "dezember": 12, "dez": 12,
    # French
    "janvier": 1, "janv": 1, "février": 2, "fevrier": 2, "févr": 2, "mars": 3,
    "avril": 4, "avr": 4, "juin": 6, "juillet": 7, "juil": 7, "août": 8, "aout": 8,
    "septembre": 9, "octobre": 10, "novembre": 11, "décembre": 12, "decembre": 12,
}

DATE_NUMERIC = re.compile(r'^(\d{1,2})[./\-](\d{1,2})[./\-](\d{4}|\d{2})$')
DATE_ISO = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')
DATE_DAY_MONTH_NAME = re.compile(r'^(\d{1,2})(?:\.|er)?\s+([^\W\d_]+)\.?,?\s+(\d{4})$')
DATE_MONTH_NAME_DAY = re.compile(r'^([^\W\d_]+)\.?\s+(\d{1,2}),?\s+(\d{4})$')

DATE_MIN_YEAR = 1900
DATE_MAX_YEAR = 2100


def _expand_year(year: str) -> int:
    value = int(year)
    if len(year) == 2:
        return 1900 + value if value > 30 else 2000 + value
    return value


class DateValidator(Validator):
    """European numeric dates, ISO dates and month-name dates (EN/DE/FR)."""

    entity_type = "DATE"
    name = "DateValidator"

    def _validate(self, text, context):
        confidence = CONFIDENCE_FORMAT_VALID
        match = DATE_NUMERIC.match(text)
        if match:
            day, month, year = int(match.group(1)), int(match.group(2)), _expand_year(match.group(3))
            confidence = CONFIDENCE_STANDARD
        elif DATE_ISO.match(text):
            match = DATE_ISO.match(text)
            year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
        elif DATE_DAY_MONTH_NAME.match(text):
            match = DATE_DAY_MONTH_NAME.match(text)
            month = MONTH_NAMES.get(match.group(2).lower())
            if month is None:
                return _invalid(CONFIDENCE_INVALID_FORMAT, f"Unknown month {match.group(2)!r}")
            day, year = int(match.group(1)), int(match.group(3))
        elif DATE_MONTH_NAME_DAY.match(text):
            match = DATE_MONTH_NAME_DAY.match(text)
            month = MONTH_NAMES.get(match.group(1).lower())
            if month is None:
                return _invalid(CONFIDENCE_INVALID_FORMAT, f"Unknown month {match.group(1)!r}")
            day, year = int(match.group(2)), int(match.group(3))
        else:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Unrecognized date format")

        if not DATE_MIN_YEAR <= year <= DATE_MAX_YEAR:
            return _invalid(CONFIDENCE_FAILED, f"Year {year} out of range")
        if not 1 <= month <= 12:
            return _invalid(CONFIDENCE_FAILED, f"Month {month} out of range")
        if not 1 <= day <= calendar.monthrange(year, month)[1]:
            return _invalid(CONFIDENCE_FAILED, f"Day {day} does not exist in {year}-{month:02d}")
        return _valid(confidence, "Valid date", iso=f"{year:04d}-{month:02d}-{day:02d}")


# =============================================================================
# SWISS ADDRESS VALIDATION
# =============================================================================

KNOWN_SWISS_CITIES = {
    "zürich", "zurich", "genève", "geneve", "geneva", "genf", "basel", "bern",
    "berne", "lausanne", "winterthur", "luzern", "lucerne", "st. gallen",
    "st.gallen", "lugano", "biel", "bienne", "thun", "köniz", "fribourg",
    "freiburg", "schaffhausen", "chur", "neuchâtel", "neuchatel", "sion",
    "zug", "aarau", "olten", "baden", "montreux", "vevey", "yverdon-les-bains",
    "bellinzona", "locarno", "solothurn", "frauenfeld", "uster", "emmen",
}

# Words that follow year-like numbers ("2023 Franken") but are never cities
NON_CITY_WORDS = {
    "franken", "chf", "eur", "jahre", "jahr", "years", "year", "ans", "an",
    "total", "betrag", "rechnung", "invoice", "facture", "seite", "page",
    "stück", "stk", "pieces", "mal", "times", "fois", "und", "and", "et",
}

SWISS_POSTAL_CITY = re.compile(
    r'(?<!\d)(?:CH[-\s]?)?(\d{4})\s+([^\W\d_][^\W\d_.\-]*(?:[.\s\-]+[^\W\d_]+)*)\s*$'
)
SWISS_POSTAL_MIN = 1000
SWISS_POSTAL_MAX = 9999


class SwissAddressValidator(Validator):
    """
    Swiss address ending in "<postal code> <city>", optional street before.

    Rejects amounts and years that merely look like a postal code followed
    by a word ("2023 Franken", "1990 March").
    """

    entity_type = "SWISS_ADDRESS"
    name = "SwissAddressValidator"

    def _validate(self, text, context):
        single_line = re.sub(r'\s+', ' ', text)
        match = SWISS_POSTAL_CITY.search(single_line)
        if not match:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "No postal code and city")

        postal = int(match.group(1))
        city = match.group(2).strip()
        city_lower = city.lower()
        if not SWISS_POSTAL_MIN <= postal <= SWISS_POSTAL_MAX:
            return _invalid(CONFIDENCE_INVALID_FORMAT, f"Postal code {postal} out of range")
        if len(city) < 3:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "City name too short")

        known_city = city_lower in KNOWN_SWISS_CITIES
        if not known_city:
            first_word = city_lower.split()[0]
            if first_word in MONTH_NAMES or first_word in NON_CITY_WORDS:
                return _invalid(CONFIDENCE_FALSE_POSITIVE, f"{city!r} is not a city name")

        street = single_line[:match.start()].strip(" ,")
        has_street = bool(re.search(r'[^\W\d_]{2,}', street))
        if has_street:
            confidence = CONFIDENCE_STANDARD
        elif known_city:
            confidence = CONFIDENCE_KNOWN_VALID
        else:
            confidence = CONFIDENCE_MODERATE
        return _valid(confidence, "Valid Swiss address", postal_code=match.group(1),
                      city=city, street=street or None, known_city=known_city)


# =============================================================================
# VAT / ENTERPRISE NUMBER VALIDATION
# =============================================================================

SWISS_UID_PATTERN = re.compile(
    r'^CHE[-\s]?(\d{3})[.\s]?(\d{3})[.\s]?(\d{3})(?:\s*(MWST|TVA|IVA|VAT))?$',
    re.IGNORECASE,
)
EU_VAT_PATTERN = re.compile(r'^(?:(DE|FR|IT)\d{8,11}|ATU\d{8})$')


class VatNumberValidator(Validator):
    """Swiss UID/VAT (mod-11 via stdnum) and basic DE/FR/IT/AT VAT numbers."""

    entity_type = "VAT_NUMBER"
    name = "VatNumberValidator"

    def _validate(self, text, context):
        match = SWISS_UID_PATTERN.match(text)
        if match:
            compact = "CHE" + "".join(match.group(1, 2, 3))
            if not ch_uid.is_valid(compact):
                return _invalid(CONFIDENCE_FAILED, "UID checksum mismatch")
            return _valid(CONFIDENCE_CHECKSUM_VALID, "Valid Swiss UID", country="CH",
                          compact=compact, formatted=ch_uid.format(compact))

        compact = re.sub(r'[\s.\-]', '', text).upper()
        if EU_VAT_PATTERN.match(compact):
            if eu_vat.is_valid(compact):
                return _valid(CONFIDENCE_FORMAT_VALID, "Valid EU VAT number", country=compact[:2], compact=compact)
            return _valid(CONFIDENCE_MODERATE, "EU VAT number format", country=compact[:2], compact=compact)

        return _invalid(CONFIDENCE_INVALID_FORMAT, "Not a VAT number")


# =============================================================================
# CREDIT CARD VALIDATION (LUHN ALGORITHM)
# =============================================================================

def _get_card_type(card_number: str) -> str:
    """Determine credit card type from number."""
    if card_number.startswith('4'):
        return "visa"
    if card_number[:2] in ('51', '52', '53', '54', '55') or 2221 <= int(card_number[:4]) <= 2720:
        return "mastercard"
    if card_number[:2] in ('34', '37'):
        return "amex"
    if card_number.startswith('6011') or card_number.startswith('65'):
        return "discover"
    return "unknown"


class CreditCardValidator(Validator):
    entity_type = "CREDIT_CARD"
    name = "CreditCardValidator"

    def _validate(self, text, context):
        compact = re.sub(r'[\s\-]', '', text)
        if not compact.isdigit() or not 13 <= len(compact) <= 19:
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Expected 13-19 digits")
        if not luhn.is_valid(compact):
            return _invalid(CONFIDENCE_FAILED, "Luhn checksum mismatch")
        return _valid(CONFIDENCE_CHECKSUM_VALID, "Valid card number",
                      issuer=_get_card_type(compact), masked=f"**** {compact[-4:]}")


# =============================================================================
# SWISS POSTAL CODE VALIDATION
# =============================================================================

class PostalCodeValidator(Validator):
    """
    Swiss postal codes (1000-9699).

    Not registered by default: a bare 4-digit number is too ambiguous to
    filter POSTAL_CODE candidates on, and the type would collide with
    address components.
    """

    entity_type = "POSTAL_CODE"
    name = "PostalCodeValidator"

    def _validate(self, text, context):
        compact = re.sub(r'^CH[-\s]?', '', text, flags=re.IGNORECASE)
        if not re.fullmatch(r'\d{4}', compact):
            return _invalid(CONFIDENCE_INVALID_FORMAT, "Expected 4 digits")
        if not 1000 <= int(compact) <= 9699:
            return _invalid(CONFIDENCE_FAILED, "Outside the Swiss postal code range")
        return _valid(CONFIDENCE_MODERATE, "Swiss postal code range", postal_code=compact)
