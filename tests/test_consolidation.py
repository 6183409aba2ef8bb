import logging

import pytest

from pii_pipeline.detectors.entity import MALFORMED_ENTITY, PIIEntity
from pii_pipeline.exceptions import ConfigurationError
from pii_pipeline.postprocessing.consolidation import (
    ConsolidationConfig,
    ConsolidationPass,
    link_entities,
    linking_key,
    resolve_overlaps,
)

LAUSANNE = "Rue de Lausanne 12, 1000 Lausanne"


def spans(entities):
    return [(e.entity_type, e.start, e.end) for e in entities]


def assert_disjoint(entities):
    ordered = sorted(entities, key=lambda e: e.start)
    for previous, following in zip(ordered, ordered[1:]):
        assert previous.end <= following.start


@pytest.fixture
def consolidation():
    return ConsolidationPass()


def test_lausanne_address_scenario(consolidation, make_entity):
    components = [
        make_entity(LAUSANNE, "STREET_NAME", 0, 15),
        make_entity(LAUSANNE, "STREET_NUMBER", 16, 18),
        make_entity(LAUSANNE, "POSTAL_CODE", 20, 24),
        make_entity(LAUSANNE, "CITY", 25, 33),
    ]
    result = consolidation.run(components, LAUSANNE)

    assert spans(result.entities) == [("ADDRESS", 0, 33)]
    address = result.entities[0]
    assert [(c.entity_type, c.text) for c in address.metadata["components"]] == [
        ("STREET_NAME", "Rue de Lausanne"),
        ("STREET_NUMBER", "12"),
        ("POSTAL_CODE", "1000"),
        ("CITY", "Lausanne"),
    ]
    assert result.component_entities == []
    assert address.logical_id == "ADDRESS_1"
    assert result.stats.addresses_consolidated == 1


def test_retain_components_switch(make_entity):
    components = [
        make_entity(LAUSANNE, "STREET_NAME", 0, 15),
        make_entity(LAUSANNE, "STREET_NUMBER", 16, 18),
        make_entity(LAUSANNE, "POSTAL_CODE", 20, 24),
        make_entity(LAUSANNE, "CITY", 25, 33),
    ]
    result = ConsolidationPass(ConsolidationConfig(retain_components=True)).run(components, LAUSANNE)

    address = result.entities[0]
    assert len(result.entities) == 1
    assert len(result.component_entities) == 4
    assert {e.metadata["consolidated_into"] for e in result.component_entities} == {address.entity_id}


def test_lone_postal_code_scenario(consolidation, make_entity):
    text = "Postleitzahl 1000"
    result = consolidation.run([make_entity(text, "POSTAL_CODE", 13, 17)], text)
    assert spans(result.entities) == [("POSTAL_CODE", 13, 17)]
    assert result.entities[0].logical_id == "POSTAL_CODE_1"


def test_repeated_name_shares_logical_id(consolidation, make_entity):
    text = "Hans Müller wrote to Anna Meier. Hans Müller signed. HANS  MÜLLER paid."
    starts = [0, 33, 53]
    entities = [make_entity(text, "PERSON", s, s + 11) for s in starts[:2]]
    entities.append(make_entity(text, "PERSON", 53, 65))
    entities.append(make_entity(text, "PERSON", 21, 31))

    result = consolidation.run(entities, text)

    ids = {e.text: e.logical_id for e in result.entities}
    assert ids["Hans Müller"] == "PERSON_1"
    assert ids["HANS  MÜLLER"] == "PERSON_1"
    assert ids["Anna Meier"] == "PERSON_2"
    assert result.stats.entities_linked == 3


def test_linking_is_per_type(make_entity):
    text = "Zug Zug"
    entities = [make_entity(text, "CITY", 0, 3), make_entity(text, "PERSON", 4, 7)]
    link_entities(entities)
    assert [e.logical_id for e in entities] == ["CITY_1", "PERSON_1"]


def test_linking_folds_recognizer_specific_types(make_entity):
    text = "Hans Müller met Hans Müller at Bahnhofstrasse 1 and Bahnhofstrasse 1"
    entities = [
        make_entity(text, "PERSON", 0, 11),
        make_entity(text, "PERSON_NAME", 16, 27),
        make_entity(text, "SWISS_ADDRESS", 31, 47),
        make_entity(text, "EU_ADDRESS", 52, 68),
    ]
    assert link_entities(entities) == 4
    assert [e.logical_id for e in entities] == ["PERSON_1", "PERSON_1", "ADDRESS_1", "ADDRESS_1"]
    assert [e.entity_type for e in entities] == ["PERSON", "PERSON_NAME", "SWISS_ADDRESS", "EU_ADDRESS"]


def test_linking_strategies():
    assert linking_key("  Hans   MÜLLER ", "normalized") == "hans müller"
    assert linking_key("Hans Müller", "exact") == "Hans Müller"
    assert linking_key("Dr. Hans Müller", "fuzzy") == "hans müller"
    assert linking_key("Herr Müller", "fuzzy") == "müller"
    assert linking_key("Dr.", "fuzzy") == "dr"


def test_fuzzy_linking_merges_honorifics(make_entity):
    text = "Hans Müller and Dr. Hans Müller"
    entities = [make_entity(text, "PERSON", 0, 11), make_entity(text, "PERSON", 16, 31)]
    config = ConsolidationConfig(linking_strategy="fuzzy")
    result = ConsolidationPass(config).run(entities, text)
    assert {e.logical_id for e in result.entities} == {"PERSON_1"}

    result = ConsolidationPass().run(entities, text)
    assert [e.logical_id for e in result.entities] == ["PERSON_1", "PERSON_2"]


def test_priority_beats_equal_length_and_confidence(consolidation, make_entity):
    text = "Credit Suisse"
    person = make_entity(text, "PERSON", 0, 13, 0.7)
    identifier = make_entity(text, "IDENTIFIER", 0, 13, 0.7)
    result = consolidation.run([identifier, person], text)
    assert spans(result.entities) == [("PERSON", 0, 13)]
    assert result.stats.overlaps_resolved == 1


def test_length_then_confidence_break_ties(make_entity):
    text = "Hans Müller-Meier"
    short = make_entity(text, "PERSON", 0, 11, 0.95)
    long = make_entity(text, "PERSON", 0, 17, 0.6)
    config = ConsolidationConfig()
    assert spans(resolve_overlaps([short, long], config)) == [("PERSON", 0, 17)]

    weak = make_entity(text, "PERSON", 5, 16, 0.5)
    strong = make_entity(text, "PERSON", 6, 17, 0.9)
    assert spans(resolve_overlaps([weak, strong], config)) == [("PERSON", 6, 17)]


def test_recognizer_priority_breaks_full_ties(make_entity):
    text = "Hans Müller"
    remote = make_entity(text, "PERSON", 0, 11, 0.8, metadata={"recognizer_priority": 10})
    local = make_entity(text, "PERSON", 0, 11, 0.8, metadata={"recognizer_priority": 50})
    kept = resolve_overlaps([remote, local], ConsolidationConfig())
    assert kept == [local]


def test_containment_counts_as_overlap(consolidation, make_entity):
    text = "IBAN CH93 0076 2011 6238 5295 7"
    iban = make_entity(text, "IBAN", 5, 31, 0.9)
    number = make_entity(text, "NUMBER", 10, 14, 0.99)
    result = consolidation.run([number, iban], text)
    assert spans(result.entities) == [("IBAN", 5, 31)]


def test_chain_of_overlaps_resolves_to_disjoint_set(consolidation, make_entity):
    text = "a" * 40
    entities = [
        make_entity(text, "PHONE", 0, 10, 0.9),
        make_entity(text, "DATE", 8, 20, 0.9),
        make_entity(text, "EMAIL", 18, 30, 0.9),
        make_entity(text, "NUMBER", 28, 40, 0.9),
    ]
    result = consolidation.run(entities, text)
    assert_disjoint(result.entities)
    assert spans(result.entities) == [("PHONE", 0, 10), ("EMAIL", 18, 30)]


def test_malformed_entities_dropped_with_diagnostic(consolidation, make_entity, caplog):
    text = "Hans Müller"
    good = make_entity(text, "PERSON", 0, 11)
    bad = [
        PIIEntity("PERSON", "x", 5, 3, 0.9),
        PIIEntity("PERSON", "x", -1, 3, 0.9),
        PIIEntity("PERSON", "x", 5, 50, 0.9),
        PIIEntity("PERSON", "x", 4, 4, 0.9),
        PIIEntity("PERSON", "x", "0", 4, 0.9),
    ]
    with caplog.at_level(logging.WARNING):
        result = consolidation.run([good] + bad, text)

    assert spans(result.entities) == [("PERSON", 0, 11)]
    assert result.stats.malformed_dropped == 5
    assert [d.kind for d in result.diagnostics] == [MALFORMED_ENTITY] * 5
    records = [r for r in caplog.records if hasattr(r, "diagnostic")]
    assert len(records) == 5
    assert records[0].diagnostic["kind"] == MALFORMED_ENTITY


def test_stale_text_is_repaired(consolidation):
    text = "Hans Müller"
    entity = PIIEntity("PERSON", "Hans Mueller", 0, 11, 0.8)
    result = consolidation.run([entity], text)
    assert result.entities[0].text == "Hans Müller"
    # The caller's candidate is left alone
    assert entity.text == "Hans Mueller"
    assert "logical_id" not in entity.metadata


def test_pass_is_idempotent(consolidation, make_entity):
    text = LAUSANNE + " - Hans Müller, Hans Müller"
    entities = [
        make_entity(LAUSANNE, "STREET_NAME", 0, 15),
        make_entity(LAUSANNE, "STREET_NUMBER", 16, 18),
        make_entity(LAUSANNE, "POSTAL_CODE", 20, 24),
        make_entity(LAUSANNE, "CITY", 25, 33),
        make_entity(text, "PERSON", 36, 47),
        make_entity(text, "PERSON", 49, 60),
        make_entity(text, "IDENTIFIER", 36, 40),
    ]
    once = consolidation.run(entities, text)
    twice = consolidation.run(once.entities, text)

    assert spans(twice.entities) == spans(once.entities)
    assert [e.logical_id for e in twice.entities] == [e.logical_id for e in once.entities]
    assert twice.stats.overlaps_resolved == 0
    assert twice.stats.addresses_consolidated == 0


def test_stages_can_be_disabled(make_entity):
    components = [
        make_entity(LAUSANNE, "STREET_NAME", 0, 15),
        make_entity(LAUSANNE, "STREET_NUMBER", 16, 18),
        make_entity(LAUSANNE, "POSTAL_CODE", 20, 24),
        make_entity(LAUSANNE, "CITY", 25, 33),
    ]
    config = ConsolidationConfig(enable_address_consolidation=False, enable_entity_linking=False)
    result = ConsolidationPass(config).run(components, LAUSANNE)
    assert len(result.entities) == 4
    assert all(e.logical_id is None for e in result.entities)


def test_empty_input(consolidation):
    result = consolidation.run([], "")
    assert result.entities == []
    assert result.stats.original_count == 0


@pytest.mark.parametrize("overrides", [
    {"confidence_aggregate": "max"},
    {"linking_strategy": "phonetic"},
    {"address_max_gap": -1},
    {"min_address_components": 1},
    {"min_consolidation_confidence": 1.5},
])
def test_invalid_config_raises(overrides):
    with pytest.raises(ConfigurationError):
        ConsolidationConfig(**overrides)


def test_config_from_settings():
    config = ConsolidationConfig.from_settings({"address_max_gap": 80}, entity_priority={"PERSON": 1})
    assert config.address_max_gap == 80
    assert config.priority_of("PERSON") == 1
    assert config.priority_of("UNKNOWN_TYPE") == 0
    with pytest.raises(TypeError):
        config.entity_priority["PERSON"] = 5
    with pytest.raises(ConfigurationError):
        ConsolidationConfig.from_settings({"max_gap": 80})
