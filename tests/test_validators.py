import pytest

from pii_pipeline.detectors.validators import (
    CONFIDENCE_CHECKSUM_VALID,
    CONFIDENCE_FALSE_POSITIVE,
    CONFIDENCE_FORMAT_VALID,
    CONFIDENCE_MODERATE,
    CreditCardValidator,
    DateValidator,
    EmailValidator,
    IbanValidator,
    PhoneValidator,
    PostalCodeValidator,
    SwissAddressValidator,
    SwissAvsValidator,
    VatNumberValidator,
)


def test_swiss_avs():
    validator = SwissAvsValidator()
    result = validator.validate("756.9217.0769.85")
    assert result.is_valid
    assert result.confidence == CONFIDENCE_CHECKSUM_VALID
    assert result.metadata["compact"] == "7569217076985"

    assert not validator.validate("756.9217.0769.84")
    assert not validator.validate("123.4567.8901.23")


def test_iban():
    validator = IbanValidator()
    result = validator.validate("CH93 0076 2011 6238 5295 7")
    assert result.is_valid
    assert result.metadata["country"] == "CH"
    assert validator.validate("DE89370400440532013000").is_valid

    assert not validator.validate("CH94 0076 2011 6238 5295 7")
    assert not validator.validate("CH93 0076")


@pytest.mark.parametrize("text", ["john.doe@mail.ch", "anna+news@example.co.uk"])
def test_valid_emails(text):
    result = EmailValidator().validate(text)
    assert result.is_valid
    assert result.confidence == CONFIDENCE_FORMAT_VALID


@pytest.mark.parametrize("text", ["john..doe@mail.ch", ".john@mail.ch", "john@mail", "john@mail.c0", "not an email"])
def test_invalid_emails(text):
    assert not EmailValidator().validate(text)


def test_phone_mobile_and_fixed_line():
    validator = PhoneValidator()
    mobile = validator.validate("+41 79 123 45 67")
    assert mobile.is_valid
    assert mobile.confidence == CONFIDENCE_FORMAT_VALID
    assert mobile.metadata["e164"] == "+41791234567"
    assert mobile.metadata["mobile"] is True

    fixed = validator.validate("044 668 18 00")
    assert fixed.is_valid
    assert fixed.confidence == CONFIDENCE_MODERATE
    assert fixed.metadata["region"] == "CH"


def test_phone_rejects_short_and_long_numbers():
    validator = PhoneValidator()
    assert not validator.validate("123 45")
    assert not validator.validate("+41 79 123 45 67 89 01 23")


@pytest.mark.parametrize("text,iso", [
    ("31.12.2023", "2023-12-31"),
    ("2024-02-29", "2024-02-29"),
    ("1. März 2020", "2020-03-01"),
    ("14 juillet 1989", "1989-07-14"),
    ("March 5, 2021", "2021-03-05"),
    ("01/02/85", "1985-02-01"),
])
def test_valid_dates(text, iso):
    result = DateValidator().validate(text)
    assert result.is_valid
    assert result.metadata["iso"] == iso


@pytest.mark.parametrize("text", ["31.02.2023", "2023-02-29", "12.13.2020", "1. Foo 2020", "99.99.9999"])
def test_invalid_dates(text):
    assert not DateValidator().validate(text)


def test_swiss_address():
    validator = SwissAddressValidator()
    full = validator.validate("Bahnhofstrasse 1, 8001 Zürich")
    assert full.is_valid
    assert full.metadata["postal_code"] == "8001"
    assert full.metadata["known_city"] is True

    city_only = validator.validate("1000 Lausanne")
    assert city_only.is_valid
    assert city_only.metadata["street"] is None


def test_swiss_address_rejects_amounts_and_years():
    validator = SwissAddressValidator()
    amount = validator.validate("2023 Franken")
    assert not amount
    assert amount.confidence == CONFIDENCE_FALSE_POSITIVE
    assert not validator.validate("1990 March")
    assert not validator.validate("0999 Lausanne")


def test_vat_numbers():
    validator = VatNumberValidator()
    uid = validator.validate("CHE-100.155.212")
    assert uid.is_valid
    assert uid.confidence == CONFIDENCE_CHECKSUM_VALID
    assert uid.metadata["compact"] == "CHE100155212"

    assert not validator.validate("CHE-100.155.213")
    eu = validator.validate("DE136695976")
    assert eu.is_valid
    assert eu.metadata["country"] == "DE"
    assert not validator.validate("XX123")


def test_credit_card():
    validator = CreditCardValidator()
    result = validator.validate("4111 1111 1111 1111")
    assert result.is_valid
    assert result.metadata["issuer"] == "visa"
    assert result.metadata["masked"] == "**** 1111"
    assert not validator.validate("4111 1111 1111 1112")
    assert not validator.validate("4111")


def test_postal_code_range():
    validator = PostalCodeValidator()
    assert validator.validate("8001").is_valid
    assert validator.validate("CH-1000").is_valid
    assert not validator.validate("9999")
    assert not validator.validate("800")


@pytest.mark.parametrize("validator", [
    SwissAvsValidator(), IbanValidator(), EmailValidator(), PhoneValidator(),
    DateValidator(), SwissAddressValidator(), VatNumberValidator(), CreditCardValidator(),
])
@pytest.mark.parametrize("value", [None, 42, "", "   ", "\x00\x01"])
def test_validators_never_raise(validator, value):
    result = validator.validate(value)
    assert not result.is_valid
