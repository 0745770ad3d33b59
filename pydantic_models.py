from types import MappingProxyType
from typing import Dict, FrozenSet, List, Literal, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

from heuristic_rules import clean_symptom

Sex = Literal["male", "female"]
Confidence = Literal["Low", "Moderate", "High"]


# ---------- canonical knowledge base ----------

class Demographics(BaseModel):
    model_config = ConfigDict(frozen=True)

    gender: Optional[Sex] = None
    min_age: Optional[float] = None
    max_age: Optional[float] = None

    def admits(self, age: float, sex: str) -> bool:
        """False when the age or sex falls outside this constraint."""
        if self.min_age is not None and age < self.min_age:
            return False
        if self.max_age is not None and age > self.max_age:
            return False
        if self.gender is not None and self.gender != sex:
            return False
        return True


class Features(BaseModel):
    model_config = ConfigDict(frozen=True)

    present: Dict[str, float] = Field(default_factory=dict, validate_default=True)
    absent: Dict[str, float] = Field(default_factory=dict, validate_default=True)

    @field_validator("present", "absent")
    @classmethod
    def read_only(cls, v):
        # the frozen model does not cover the weight maps themselves
        return MappingProxyType(v)

    @field_serializer("present", "absent")
    def plain_dict(self, v):
        return dict(v)


class ConditionMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Optional[str] = None
    icd10: Tuple[str, ...] = ()
    references: Tuple[str, ...] = ()
    rare: bool = False
    urgent: bool = False
    gender_specific: bool = False
    risk: Optional[float] = Field(default=None, ge=0, le=5)


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    aliases: Tuple[str, ...] = ()
    demographics: Demographics = Field(default_factory=Demographics)
    features: Features = Field(default_factory=Features)
    prevalence_weight: float = 0.2
    pearls: Tuple[str, ...] = ()
    red_flags: Tuple[str, ...] = ()
    study_treatment: Tuple[str, ...] = ()
    meta: ConditionMeta = Field(default_factory=ConditionMeta)


# ---------- ranking ----------

class Query(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    age: float = Field(default=25, ge=0)
    sex: Sex = "female"
    selected_symptoms: FrozenSet[str] = Field(
        default_factory=frozenset,
        validation_alias=AliasChoices("symptoms", "selectedSymptoms", "selected_symptoms"),
    )
    explicit_negatives: FrozenSet[str] = Field(
        default_factory=frozenset,
        validation_alias=AliasChoices("negatives", "explicitNegatives", "explicit_negatives"),
    )
    free_text: str = Field(default="", validation_alias=AliasChoices("freeText", "free_text"))

    @field_validator("sex", mode="before")
    @classmethod
    def lower_sex(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("selected_symptoms", "explicit_negatives", mode="before")
    @classmethod
    def lower_symptoms(cls, v):
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        return frozenset(clean_symptom(s) for s in v) - {""}

    @field_validator("free_text", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v


class RankedResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    condition_id: str
    name: str
    score: float
    reference: Condition
    matched_symptoms: Tuple[str, ...] = ()
    corroborating_negatives: Tuple[str, ...] = ()
    excluded: bool = False


# ---------- collaborators ----------

class MetadataRecord(BaseModel):
    name: str
    aliases: List[str] = Field(default_factory=list)
    icd10: List[str] = Field(default_factory=list)
    medline: Optional[str] = None


class ExplanationItem(BaseModel):
    condition: str
    supporting_symptoms: List[str] = Field(default_factory=list)
    contradicting_or_absent_symptoms: List[str] = Field(default_factory=list)
    comparison_to_other_conditions: str = ""
    red_flags: List[str] = Field(default_factory=list)
    confidence: Confidence = "Low"

    @field_validator("confidence", mode="before")
    @classmethod
    def title_confidence(cls, v):
        # models answer "moderate", "HIGH", "medium" ...
        if isinstance(v, str):
            v = v.strip().title()
            if v == "Medium":
                v = "Moderate"
        return v


class ExplanationResponse(BaseModel):
    explanations: List[ExplanationItem]
    disclaimer: str = "Educational only. Not medical advice."
    notes: str = ""


class ExplanationResult(BaseModel):
    ok: bool
    response: Optional[ExplanationResponse] = None
    error: Optional[str] = None
    raw: str = ""
