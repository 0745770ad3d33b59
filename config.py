# config.py - runtime settings, read from the environment / .env
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Symptoms offered even when no dataset record mentions them
DEFAULT_SYMPTOMS = [
    "fever", "cough", "sore throat", "headache", "fatigue", "nausea",
    "vomiting", "diarrhea", "abdominal pain", "chest pain",
    "shortness of breath", "rash", "dizziness", "runny nose", "body aches",
]


class Settings(BaseSettings):
    """
    Application settings.

    Every field can be overridden with a MEDULI_<FIELD> environment variable
    (e.g. MEDULI_TOP_N=10); the OpenAI key keeps its usual OPENAI_API_KEY name.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDULI_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Data sources
    dataset_path: str = "diseases.json"
    database_path: str = "medline.db"
    raw_log_path: str = "llm_raw_logs.txt"

    # Normalizer
    default_prevalence: float = 0.2
    default_symptoms: List[str] = Field(default_factory=lambda: list(DEFAULT_SYMPTOMS))
    strict_mode: bool = False  # disables heuristic feature inference
    infer_demographics: bool = True

    # Ranking
    top_n: int = 6
    show_zero_scores: bool = False
    show_near_misses: bool = False

    # Explanation collaborator
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_model: str = "gpt-4.1-mini"
    openai_temperature: float = 0.2
    openai_timeout: float = 15.0

    # Server
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 5000

    @field_validator("top_n")
    @classmethod
    def validate_top_n(cls, v: int) -> int:
        if v < 1:
            raise ValueError("top_n must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def use_openai(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
