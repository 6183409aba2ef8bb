import asyncio

import pytest

from pii_pipeline.detectors.entity import LOCAL_RECOGNIZER_FAILURE, EntitySource
from pii_pipeline.detectors.pattern_recognizers import PATTERN_DEFINITIONS, build_default_recognizers
from pii_pipeline.detectors.recognizer_registry import RecognizerRegistry, recognizer_priority
from pii_pipeline.detectors.remote_recognizer import HttpRemoteRecognizer, RemoteRecognizerConfig


def remote(name="ner-service", **overrides):
    settings = {"name": name, "endpoint": "https://ner.example.test/analyze"}
    settings.update(overrides)
    return HttpRemoteRecognizer(RemoteRecognizerConfig(**settings))


@pytest.fixture
def registry():
    return RecognizerRegistry(local_recognizers=build_default_recognizers(["en", "de"]))


def test_default_recognizers_cover_every_pattern_type_per_language():
    recognizers = build_default_recognizers(["en", "fr"])
    assert len(recognizers) == 2 * len(PATTERN_DEFINITIONS)
    assert {r.supported_language for r in recognizers} == {"en", "fr"}
    assert "EmailRecognizer_fr" in {r.name for r in recognizers}


def test_get_local_filters_by_language(registry):
    english = registry.get_local("en")
    assert english
    assert all(r.supported_language == "en" for r in english)
    assert registry.get_local("it") == []


def test_discovery_by_entity_type_includes_remote(registry):
    registry.add_remote(remote(supported_entities=("PERSON",)))
    registry.add_remote(remote("catch-all"))

    email = registry.get_recognizers_for_entity("EMAIL")
    assert "EmailRecognizer_en" in email
    assert "EmailRecognizer_de" in email
    assert "catch-all" in email
    assert "ner-service" not in email
    assert registry.get_recognizers_for_entity("PERSON") == ["catch-all", "ner-service"]


def test_discovery_by_language_lists_local_then_remote(registry):
    registry.add_remote(remote(supported_languages=("de",)))
    german = registry.get_by_language("de")
    assert german[-1].name == "ner-service"
    assert all(r.name != "ner-service" for r in registry.get_by_language("en"))


def test_registered_names_are_sorted(registry):
    names = registry.get_registered_recognizers()
    assert names == sorted(names)


def test_duplicate_remote_name_rejected(registry):
    registry.add_remote(remote())
    with pytest.raises(ValueError):
        registry.add_remote(remote())


def test_enabled_remote_filtering(registry):
    registry.add_remote(remote("off"))
    registry.add_remote(remote("on", enabled=True, supported_languages=("en",)))
    assert [r.name for r in registry.get_enabled_remote()] == ["on"]
    assert registry.get_enabled_remote("fr") == []


def test_remote_priority_is_below_local(registry):
    local = registry.get_local("en")[0]
    assert recognizer_priority(remote()) < recognizer_priority(local)


def test_analyze_local_tags_pattern_results(registry):
    text = "Write to john.doe@mail.ch"
    entities = registry.analyze_local(text, "en")

    emails = [e for e in entities if e.entity_type == "EMAIL"]
    assert len(emails) == 1
    email = emails[0]
    assert email.text == "john.doe@mail.ch"
    assert text[email.start:email.end] == email.text
    assert email.source == EntitySource.LOCAL_PATTERN
    assert email.metadata["recognizer"] == "EmailRecognizer_en"
    assert email.metadata["pattern_name"] == "email"


def test_analyze_local_tags_model_results(keyword_recognizer):
    registry = RecognizerRegistry(local_recognizers=[keyword_recognizer("PERSON", ["Hans Müller"])])
    entities = registry.analyze_local("Hans Müller, Bern", "en")
    assert [(e.entity_type, e.start, e.end) for e in entities] == [("PERSON", 0, 11)]
    assert entities[0].source == EntitySource.LOCAL_MODEL


def test_failing_local_recognizer_is_isolated(keyword_recognizer, broken_recognizer):
    registry = RecognizerRegistry(local_recognizers=[
        broken_recognizer,
        keyword_recognizer("PERSON", ["Hans Müller"]),
    ])
    diagnostics = []
    entities = registry.analyze_local("Hans Müller", "en", diagnostics)

    assert [e.text for e in entities] == ["Hans Müller"]
    assert len(diagnostics) == 1
    assert diagnostics[0].kind == LOCAL_RECOGNIZER_FAILURE
    assert diagnostics[0].details["recognizer"] == "BrokenRecognizer"


def test_remote_analysis_is_a_no_op_by_default(registry):
    registry.add_remote(remote())
    assert asyncio.run(registry.analyze_remote("Hans Müller", "en")) == []


def test_health_check_without_enabled_recognizers(registry):
    registry.add_remote(remote())
    assert asyncio.run(registry.health_check()) == {}
