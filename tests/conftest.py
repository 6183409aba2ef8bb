"""Shared fixtures: isolated config and fresh process-wide registries."""

import re

import pytest
from presidio_analyzer import AnalysisExplanation, EntityRecognizer, RecognizerResult

from pii_pipeline import detection_config
from pii_pipeline.detection_config import DetectionConfig
from pii_pipeline.detectors.entity import EntitySource, PIIEntity
from pii_pipeline.detectors.validator_registry import _reset_validators_cache


@pytest.fixture(autouse=True)
def reset_singletons():
    detection_config.reset_config()
    _reset_validators_cache()
    yield
    detection_config.reset_config()
    _reset_validators_cache()


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "detection_config.json"


@pytest.fixture
def config(config_path):
    return DetectionConfig(str(config_path))


@pytest.fixture
def make_entity():
    """Build an entity whose text is sliced from the given document."""

    def factory(text, entity_type, start, end, confidence=0.8, **kwargs):
        kwargs.setdefault("source", EntitySource.LOCAL_MODEL)
        return PIIEntity(
            entity_type=entity_type,
            text=text[start:end],
            start=start,
            end=end,
            confidence=confidence,
            **kwargs
        )

    return factory


class KeywordRecognizer(EntityRecognizer):
    """Model stand-in: reports every occurrence of fixed phrases."""

    def __init__(self, entity_type, phrases, score=0.8, supported_language="en", name=None):
        self.phrases = list(phrases)
        self.score = score
        super().__init__(
            supported_entities=[entity_type],
            supported_language=supported_language,
            name=name or f"Keyword{entity_type.title()}Recognizer",
        )

    def load(self) -> None:
        pass

    def analyze(self, text, entities, nlp_artifacts=None):
        results = []
        for phrase in self.phrases:
            for match in re.finditer(re.escape(phrase), text):
                explanation = AnalysisExplanation(
                    recognizer=self.name,
                    original_score=self.score,
                    pattern_name="keyword",
                    pattern=None,
                    validation_result=None,
                )
                results.append(RecognizerResult(
                    entity_type=self.supported_entities[0],
                    start=match.start(),
                    end=match.end(),
                    score=self.score,
                    analysis_explanation=explanation,
                ))
        return results


class BrokenRecognizer(EntityRecognizer):
    """Recognizer whose model fails at inference time."""

    def __init__(self, supported_language="en"):
        super().__init__(supported_entities=["PERSON"], supported_language=supported_language, name="BrokenRecognizer")

    def load(self) -> None:
        pass

    def analyze(self, text, entities, nlp_artifacts=None):
        raise RuntimeError("model weights missing")


@pytest.fixture
def keyword_recognizer():
    return KeywordRecognizer


@pytest.fixture
def broken_recognizer():
    return BrokenRecognizer()
