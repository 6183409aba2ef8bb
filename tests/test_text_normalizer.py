import pytest

from pii_pipeline.exceptions import ConfigurationError
from pii_pipeline.preprocessing.text_normalizer import (
    NormalizerOptions,
    TextNormalizer,
    map_span,
    normalize_text,
)


@pytest.fixture
def normalizer():
    return TextNormalizer()


def assert_map_is_monotone(result):
    index_map = result.index_map
    assert len(index_map) == len(result.normalized_text)
    assert all(a <= b for a, b in zip(index_map, index_map[1:]))
    assert all(0 <= i < len(result.original_text) for i in index_map)


def test_obfuscated_email_maps_to_whole_phrase(normalizer):
    original = "john (dot) doe (at) mail (dot) ch"
    result = normalizer.normalize(original)

    assert result.normalized_text == "john.doe@mail.ch"
    assert result.map_span(0, 16) == (0, len(original))
    assert_map_is_monotone(result)


def test_obfuscated_email_inside_sentence(normalizer):
    original = "Contact: anna [at] example [dot] org today"
    result = normalizer.normalize(original)

    assert result.normalized_text == "Contact: anna@example.org today"
    start = result.normalized_text.index("anna")
    end = start + len("anna@example.org")
    s, e = result.map_span(start, end)
    assert original[s:e] == "anna [at] example [dot] org"


def test_localized_obfuscation_words(normalizer):
    assert normalizer.normalize("marie arobase exemple point fr").normalized_text == "marie@exemple.fr"
    assert normalizer.normalize("max (klammeraffe) firma (punkt) de").normalized_text == "max@firma.de"


def test_plain_sentence_with_at_is_untouched(normalizer):
    text = "Meet me at the station. See you then."
    result = normalizer.normalize(text)
    assert result.normalized_text == text
    assert not result.changed


def test_fullwidth_characters_fold_to_ascii(normalizer):
    original = "\uff4a\uff4f\uff48\uff4e\uff20\uff4d\uff41\uff49\uff4c\uff0e\uff43\uff48"
    result = normalizer.normalize(original)
    assert result.normalized_text == "john@mail.ch"
    assert result.map_span(0, len(result.normalized_text)) == (0, len(original))


def test_combining_marks_compose_and_map_to_base(normalizer):
    original = "Mu\u0308ller"
    result = normalizer.normalize(original)
    assert result.normalized_text == "M\u00fcller"
    assert result.index_map == [0, 1, 3, 4, 5, 6]
    assert result.map_span(1, 2) == (1, 3)


def test_zero_width_and_nbsp_are_removed(normalizer):
    original = "IBAN\u200b:\u00a0CH93"
    result = normalizer.normalize(original)
    assert result.normalized_text == "IBAN: CH93"
    start = result.normalized_text.index("CH93")
    s, e = result.map_span(start, start + 4)
    assert original[s:e] == "CH93"


def test_whitespace_runs_collapse_but_newlines_survive(normalizer):
    original = "Hans\t\t  M\u00fcller\nBern"
    result = normalizer.normalize(original)
    assert result.normalized_text == "Hans M\u00fcller\nBern"
    assert result.index_map[4] == 4
    assert result.map_span(5, 11) == (8, 14)


def test_dashes_fold_to_hyphen(normalizer):
    assert normalizer.normalize("2020\u20132021").normalized_text == "2020-2021"


def test_phone_trunk_marker_removed(normalizer):
    original = "Tel: +41 (0)79 123 45 67"
    result = normalizer.normalize(original)
    assert result.normalized_text == "Tel: +41 79 123 45 67"
    start = result.normalized_text.index("+41")
    s, e = result.map_span(start, len(result.normalized_text))
    assert original[s:e] == "+41 (0)79 123 45 67"


def test_phone_separators_canonicalized(normalizer):
    assert normalizer.normalize("Call 079-123-45-67 now").normalized_text == "Call 079 123 45 67 now"
    assert normalizer.normalize("+41.79.123.45.67").normalized_text == "+41 79 123 45 67"


def test_dates_and_short_numbers_are_not_phones(normalizer):
    assert normalizer.normalize("Date: 01.02.2024").normalized_text == "Date: 01.02.2024"
    assert normalizer.normalize("Ref 0-12-34").normalized_text == "Ref 0-12-34"


def test_normalize_is_idempotent(normalizer):
    samples = [
        "john (dot) doe (at) mail (dot) ch",
        "Tel: +41 (0)79 123 45 67",
        "Mu\u0308ller\u00a0\u00a0AG",
        "plain text",
    ]
    for sample in samples:
        once = normalizer.normalize(sample).normalized_text
        assert normalizer.normalize(once).normalized_text == once


def test_steps_can_be_disabled():
    normalizer = TextNormalizer(NormalizerOptions(handle_emails=False, normalize_whitespace=False))
    result = normalizer.normalize("a (at) b (dot) ch  x")
    assert result.normalized_text == "a (at) b (dot) ch  x"
    assert "emails" not in result.steps_applied


def test_non_string_and_empty_input_never_raise(normalizer):
    assert normalizer.normalize(None).normalized_text == ""
    assert normalizer.normalize("").index_map == []
    assert normalizer.normalize(12345).normalized_text == "12345"


def test_invalid_options_raise_configuration_error():
    with pytest.raises(ConfigurationError):
        NormalizerOptions(normalization_form="NFX")
    with pytest.raises(ConfigurationError):
        NormalizerOptions(supported_locales=("en", "xx"))


def test_map_span_edge_cases():
    assert map_span(2, 5, []) == (2, 5)
    index_map = [0, 0, 3, 4]
    assert map_span(0, 1, index_map, 6) == (0, 3)
    assert map_span(3, 10, index_map, 6) == (4, 6)
    assert map_span(2, 2, index_map, 6) == (3, 3)


def test_normalize_text_returns_string():
    assert normalize_text("a\u00a0b") == "a b"


def test_mapped_original_substring_renormalizes_to_detection(normalizer):
    cases = [
        ("Mail: john (dot) doe (at) mail (dot) ch!", "john.doe@mail.ch"),
        ("Tel: +41 (0)79 123 45 67", "+41 79 123 45 67"),
        ("Herr Müller  AG", "Müller AG"),
    ]
    for original, detected in cases:
        result = normalizer.normalize(original)
        start = result.normalized_text.index(detected)
        s, e = result.map_span(start, start + len(detected))
        assert normalizer.normalize(original[s:e]).normalized_text == detected


def test_prose_before_literal_email_is_untouched(normalizer):
    for text in ("Voir le point marie@example.ch", "Connect the dot john@example.com"):
        result = normalizer.normalize(text)
        assert result.normalized_text == text
        assert result.index_map == list(range(len(text)))


def test_bare_dot_and_punkt_are_not_tokens(normalizer):
    assert normalizer.normalize("ein Punkt max (klammeraffe) firma (punkt) de").normalized_text == \
        "ein Punkt max@firma.de"
    assert normalizer.normalize("connect the dot and go").normalized_text == "connect the dot and go"


def test_bare_point_needs_obfuscated_at(normalizer):
    assert normalizer.normalize("marie (at) exemple point fr").normalized_text == "marie@exemple.fr"
    assert normalizer.normalize("marie@exemple point fr").normalized_text == "marie@exemple point fr"


def test_mixed_separator_phones_canonicalized(normalizer):
    assert normalizer.normalize("+41 79-123-45-67").normalized_text == "+41 79 123 45 67"
    assert normalizer.normalize("Tel: +41 (0)79-123-45-67").normalized_text == "Tel: +41 79 123 45 67"
    assert normalizer.normalize("+41 79/123/45/67").normalized_text == "+41 79 123 45 67"
