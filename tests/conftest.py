import json

import pytest

from config import Settings
from pydantic_models import Condition, Demographics, Features


@pytest.fixture
def raw_records():
    return [
        {
            "id": "flu",
            "laytext": "Influenza",
            "features": {"present": {"Fever": 1.5, "cough": 1}, "absent": {"rash": 1}},
            "prevalenceWeight": 0.3,
        },
        {
            "code": "cold",
            "name": "Common cold",
            "symptoms": ["runny nose", "sneezing", "cough"],
        },
        {
            "name": "Migraine",
            "description": "Throbbing headache with nausea.",
        },
    ]


@pytest.fixture
def dataset_doc(raw_records):
    return {"symptomVocabulary": ["fever", "nausea", "headache"], "conditions": raw_records}


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return Settings(
        dataset_path=str(tmp_path / "diseases.json"),
        database_path=str(tmp_path / "medline.db"),
        raw_log_path=str(tmp_path / "llm_raw_logs.txt"),
        default_symptoms=[],
    )


@pytest.fixture
def dataset_file(settings, dataset_doc):
    with open(settings.dataset_path, "w", encoding="utf-8") as f:
        json.dump(dataset_doc, f)
    return settings.dataset_path


@pytest.fixture
def make_condition():
    def _make(cid, present=None, absent=None, prevalence=0.2, **demographics):
        return Condition(
            id=cid,
            name=cid.title(),
            features=Features(present=present or {}, absent=absent or {}),
            prevalence_weight=prevalence,
            demographics=Demographics(**demographics),
        )
    return _make
