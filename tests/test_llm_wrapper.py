import json
from types import SimpleNamespace

import pytest
from openai import OpenAIError

import llm_wrapper
from errors import ExplanationError
from llm_wrapper import build_payload, get_explanation, parse_and_validate_json
from pydantic_models import Query
from ranking import rank


@pytest.fixture
def ranked(make_condition):
    kb = [
        make_condition("flu", present={"fever": 1, "cough": 1, "body aches": 1}, absent={"rash": 1}),
        make_condition("cold", present={"cough": 1}),
    ]
    return rank(kb, (), Query(selected_symptoms={"fever", "cough", "body aches"}, explicit_negatives={"rash"}))


def fake_openai(content=None, error=None):
    class FakeOpenAI:
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.chat = SimpleNamespace(completions=SimpleNamespace(create=self.create))

        def create(self, **kwargs):
            if error is not None:
                raise error
            message = SimpleNamespace(content=content)
            return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    return FakeOpenAI


def test_build_payload_from_ranked_results(ranked):
    payload = build_payload("fever and cough", ranked)
    first = payload["rankedConditions"][0]
    assert payload["input"] == "fever and cough"
    assert first["name"] == "Flu"
    assert first["matchedSymptoms"] == ["body aches", "cough", "fever"]
    assert first["absentSymptoms"] == ["rash"]
    assert first["medline"] is None


def test_build_payload_from_client_dicts():
    payload = build_payload(None, [{"name": "Asthma", "matchedSymptoms": ["wheezing"]}, {"score": 1}])
    assert payload == {
        "input": "",
        "rankedConditions": [{
            "name": "Asthma", "matchedSymptoms": ["wheezing"], "absentSymptoms": [],
            "redFlags": [], "evidence": {}, "medline": None,
        }],
    }


def test_parse_strips_fences_and_trailing_commas():
    raw = """```json
{"explanations": [{"condition": "Flu", "supporting_symptoms": ["fever",], "confidence": "moderate"},],}
```"""
    response = parse_and_validate_json(raw)
    assert response.explanations[0].condition == "Flu"
    assert response.explanations[0].supporting_symptoms == ["fever"]
    assert response.explanations[0].confidence == "Moderate"


def test_parse_rescues_missing_confidence_and_bare_lists():
    response = parse_and_validate_json('Here you go: [{"name": "Flu"}] hope this helps')
    assert response.explanations[0].condition == "Flu"
    assert response.explanations[0].confidence == "Low"
    assert "parsed_and_rescued_confidence" in response.notes


def test_parse_accepts_conditions_key():
    raw = json.dumps({"conditions": [{"condition": "Flu", "confidence": "High"}]})
    assert parse_and_validate_json(raw).explanations[0].confidence == "High"


@pytest.mark.parametrize("raw", ["no json here", '{"explanations": "nope"}', '{"explanations": [{"confidence": "High"}]}'])
def test_parse_rejects_garbage(raw):
    with pytest.raises(ExplanationError) as exc:
        parse_and_validate_json(raw)
    assert exc.value.raw


def test_mock_explanation_without_api_key(settings, ranked, tmp_path):
    result = get_explanation("fever, cough", ranked, settings)
    assert result.ok
    flu, cold = result.response.explanations
    assert (flu.condition, flu.confidence) == ("Flu", "High")
    assert (cold.condition, cold.confidence) == ("Cold", "Low")
    assert "MOCK CALL" in (tmp_path / "llm_raw_logs.txt").read_text(encoding="utf-8")


def test_openai_response_is_parsed(settings, ranked, monkeypatch):
    content = '```\n{"explanations": [{"condition": "Flu", "confidence": "High"}]}\n```'
    monkeypatch.setattr(llm_wrapper, "OpenAI", fake_openai(content=content))
    result = get_explanation("fever", ranked, settings.model_copy(update={"openai_api_key": "sk-test"}))
    assert result.ok
    assert result.response.explanations[0].condition == "Flu"


def test_openai_failure_is_reported_not_raised(settings, ranked, monkeypatch):
    monkeypatch.setattr(llm_wrapper, "OpenAI", fake_openai(error=OpenAIError("boom")))
    result = get_explanation("fever", ranked, settings.model_copy(update={"openai_api_key": "sk-test"}))
    assert not result.ok
    assert result.error == "request_failed"
    assert result.response is None


def test_invalid_openai_output_is_reported(settings, ranked, monkeypatch):
    monkeypatch.setattr(llm_wrapper, "OpenAI", fake_openai(content="I cannot help with that."))
    result = get_explanation("fever", ranked, settings.model_copy(update={"openai_api_key": "sk-test"}))
    assert (result.ok, result.error) == (False, "invalid_response")
    assert result.raw == "I cannot help with that."


def test_explanation_leaves_ranking_untouched(settings, ranked):
    before = [r.model_dump() for r in ranked]
    get_explanation("fever", ranked, settings)
    assert [r.model_dump() for r in ranked] == before


def test_nothing_to_explain(settings):
    result = get_explanation("fever", [], settings)
    assert (result.ok, result.error) == (False, "no_ranked_conditions")
