"""
Knowledge base normalizer.

Turns condition records of whatever shape the dataset happens to use into
canonical `Condition` models plus the symptom vocabulary they share.

- FIELD_SOURCES: canonical field -> accepted source paths, probed in order
  (keys match case-insensitively, dotted paths descend into sub-objects)
- coerce_features: list / {name, weight} records / mapping / delimited string
  -> {symptom: weight}
- build_knowledge_base: the whole pass, "fail one, continue many"
"""

import logging
import math
import re
from collections.abc import Mapping
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from pydantic import ValidationError

from heuristic_rules import (
    clean_symptom,
    infer_gender_from_name,
    infer_symptoms_from_name,
    whole_word_pattern,
)
from pydantic_models import Condition, ConditionMeta, Demographics, Features

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1.0
TEXT_MATCH_WEIGHT = 0.5
NAME_RULE_WEIGHT = 0.7

FIELD_SOURCES = {
    "id": ("id", "code", "conditionId", "condition_id", "key", "slug"),
    "name": ("laytext", "lay_text", "text", "name", "title", "label", "condition", "disease"),
    "aliases": ("aliases", "synonyms", "alsoCalled", "also_called", "alternateNames", "alternate_names"),
    "present": ("features.present", "presentSymptoms", "present_symptoms", "symptoms", "signs"),
    "absent": ("features.absent", "absentSymptoms", "absent_symptoms", "negativeSymptoms",
               "negative_symptoms"),
    "prevalence": ("prevalenceWeight", "prevalence_weight", "prevalence", "prior"),
    "risk": ("meta.risk", "risk", "riskLevel", "risk_level", "severity"),
    "gender": ("demographics.gender", "demographics.sex", "gender", "sex"),
    "min_age": ("demographics.minAge", "demographics.min_age", "minAge", "min_age", "ageMin"),
    "max_age": ("demographics.maxAge", "demographics.max_age", "maxAge", "max_age", "ageMax"),
    "age_range": ("demographics.ageRange", "demographics.age_range", "ageRange", "age_range"),
    "pearls": ("pearls", "clinicalPearls", "clinical_pearls"),
    "red_flags": ("redFlags", "red_flags", "warningSigns", "warning_signs"),
    "study_treatment": ("studyTreatment", "study_treatment", "treatment", "treatments"),
    "category": ("meta.category", "category", "group", "specialty"),
    "icd10": ("references.icd10", "meta.icd10", "ICD10", "icd_10", "icd10cm"),
    "references": ("references.wikidata", "references.medline", "references.url", "meta.references",
                   "wiki", "wiki2", "wiki3", "wiki4", "medline", "url", "links"),
    "rare": ("meta.rare", "rare", "isRare", "is_rare"),
    "urgent": ("meta.urgent", "urgent", "isUrgent", "is_urgent", "emergency"),
    "gender_specific": ("meta.genderSpecific", "meta.gender_specific", "genderSpecific",
                        "gender_specific", "sexSpecific", "sex_specific"),
    "description": ("description", "summary", "overview", "definition", "details",
                    "laytext", "lay_text", "text"),
}

_MISSING = object()
_FEATURE_SPLIT = re.compile(r"[;,|/]")
_LIST_SPLIT = re.compile(r"[;\n]")
_CODE_SPLIT = re.compile(r"[;,|\s]+")
_NAME_KEYS = ("name", "symptom", "label", "text")
_WEIGHT_KEYS = ("weight", "w", "score")
_GENDERS = {
    "male": "male", "m": "male", "man": "male", "men": "male",
    "female": "female", "f": "female", "woman": "female", "women": "female",
}


# ---------- vocabulary ----------

class SymptomVocabulary:
    """Immutable, ordered set of canonical symptom names."""

    def __init__(self, names: Iterable[str] = ()):
        ordered = []
        seen = set()
        for n in names:
            if n not in seen:
                seen.add(n)
                ordered.append(n)
        self._names = tuple(ordered)
        self._index = frozenset(seen)

    def __contains__(self, name) -> bool:
        return name in self._index

    def __iter__(self):
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __eq__(self, other) -> bool:
        if isinstance(other, SymptomVocabulary):
            return self._names == other._names
        return NotImplemented

    def __repr__(self) -> str:
        return f"SymptomVocabulary({list(self._names)!r})"

    def as_list(self) -> List[str]:
        return list(self._names)


class VocabularyBuilder:
    """Mutable accumulator owned by one normalization run."""

    def __init__(self, seed: Iterable = ()):
        self._names: List[str] = []
        self._seen = set()
        self.extend(seed)

    def add(self, name) -> Optional[str]:
        key = clean_symptom(name)
        if not key:
            return None
        if key not in self._seen:
            self._seen.add(key)
            self._names.append(key)
        return key

    def extend(self, names: Iterable) -> None:
        for n in names or ():
            if isinstance(n, (str, int, float)) and not isinstance(n, bool):
                self.add(n)

    def __contains__(self, name) -> bool:
        return name in self._seen

    def snapshot(self) -> Tuple[str, ...]:
        return tuple(self._names)

    def build(self) -> SymptomVocabulary:
        return SymptomVocabulary(self._names)


class KnowledgeBase(NamedTuple):
    conditions: Tuple[Condition, ...]
    vocabulary: SymptomVocabulary

    def get(self, condition_id: str) -> Optional[Condition]:
        for c in self.conditions:
            if c.id == condition_id:
                return c
        return None


# ---------- field resolution ----------

def _get_ci(mapping: Mapping, key: str):
    if key in mapping:
        return mapping[key]
    lowered = key.lower()
    for k, v in mapping.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return _MISSING


def _lookup_path(record: Mapping, path: str):
    node = record
    for part in path.split("."):
        if not isinstance(node, Mapping):
            return _MISSING
        node = _get_ci(node, part)
        if node is _MISSING:
            return _MISSING
    return node


def _is_empty(value) -> bool:
    if value is _MISSING or value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set, Mapping)):
        return len(value) == 0
    return False


def resolve_field(record: Mapping, field: str):
    """First non-empty value among FIELD_SOURCES[field], or None."""
    for path in FIELD_SOURCES[field]:
        value = _lookup_path(record, path)
        if not _is_empty(value):
            return value
    return None


def resolve_all(record: Mapping, field: str) -> list:
    """Every non-empty value among FIELD_SOURCES[field], in table order."""
    found = []
    for path in FIELD_SOURCES[field]:
        value = _lookup_path(record, path)
        if not _is_empty(value):
            found.append(value)
    return found


# ---------- coercion helpers ----------

def coerce_number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip())
        else:
            return None
    except (ValueError, OverflowError):
        # "abc", or an integer too large for a float
        return None
    return number if math.isfinite(number) else None


def coerce_weight(value) -> Tuple[float, bool]:
    """(weight, explicit). Missing, malformed and non-positive weights become 1."""
    number = coerce_number(value)
    if number is None or number <= 0:
        return DEFAULT_WEIGHT, False
    return number, True


def coerce_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "y", "1")
    return False


def coerce_text_list(value, split=_LIST_SPLIT) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        parts = split.split(value) if split is not None else [value]
    elif isinstance(value, (list, tuple)):
        parts = [v for v in value if isinstance(v, (str, int, float)) and not isinstance(v, bool)]
    else:
        return ()
    out = []
    for p in parts:
        text = str(p).strip()
        if text and text not in out:
            out.append(text)
    return tuple(out)


def _record_name(item: Mapping):
    for k in _NAME_KEYS:
        v = _get_ci(item, k)
        if isinstance(v, str) and v.strip():
            return v
    return None


def _record_weight(item: Mapping) -> Tuple[float, bool]:
    for k in _WEIGHT_KEYS:
        v = _get_ci(item, k)
        if v is not _MISSING:
            return coerce_weight(v)
    return DEFAULT_WEIGHT, False


def _looks_like_single_record(raw: Mapping) -> bool:
    keys = {str(k).lower() for k in raw}
    return _record_name(raw) is not None and keys <= set(_NAME_KEYS) | set(_WEIGHT_KEYS)


def _feature_entries(raw):
    """Yield (name, weight, explicit) from any of the accepted feature shapes."""
    if raw is None:
        return
    if isinstance(raw, str):
        for part in _FEATURE_SPLIT.split(raw):
            yield part, DEFAULT_WEIGHT, False
    elif isinstance(raw, Mapping):
        if _looks_like_single_record(raw):
            yield (_record_name(raw), *_record_weight(raw))
            return
        for name, v in raw.items():
            if isinstance(v, Mapping):
                yield (name, *_record_weight(v))
            else:
                yield (name, *coerce_weight(v))
    elif isinstance(raw, (list, tuple)):
        for item in raw:
            if isinstance(item, str):
                yield item, DEFAULT_WEIGHT, False
            elif isinstance(item, Mapping):
                name = _record_name(item)
                if name is not None:
                    yield (name, *_record_weight(item))
            else:
                logger.debug("Ignoring feature entry of type %s", type(item).__name__)
    else:
        logger.debug("Ignoring feature source of type %s", type(raw).__name__)


def coerce_features(raw) -> Dict[str, float]:
    """
    Normalize a feature source to {lowercase symptom: weight > 0}.

    Duplicates: the first entry wins unless a later one carries an explicit,
    larger weight.
    """
    out: Dict[str, float] = {}
    for name, weight, explicit in _feature_entries(raw):
        key = clean_symptom(name)
        if not key:
            continue
        if key not in out or (explicit and weight > out[key]):
            out[key] = weight
    return out


def _coerce_gender(value) -> Optional[str]:
    if isinstance(value, str):
        return _GENDERS.get(value.strip().lower())
    return None


def _parse_age_range(value) -> Tuple[Optional[float], Optional[float]]:
    if isinstance(value, str):
        m = re.match(r"^\s*(\d+(?:\.\d+)?)?\s*(?:-|–|to)\s*(\d+(?:\.\d+)?)?\s*$", value)
        if m:
            return coerce_number(m.group(1)), coerce_number(m.group(2))
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        return coerce_number(value[0]), coerce_number(value[1])
    return None, None


def prevalence_from_risk(risk: float) -> float:
    """Monotonic map of a 0-5 risk level onto a [0.1, 0.4] prior."""
    return min(0.4, max(0.1, 0.1 + 0.06 * risk))


# ---------- per-record normalization ----------

def _scalar_text(value) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    return None


def _slug(text: str) -> str:
    return re.sub(r"[^\w]+", "_", text.lower()).strip("_")


def _demographics(record: Mapping, name: str, aliases, gender_specific: bool,
                  infer_demographics: bool) -> Demographics:
    gender = _coerce_gender(resolve_field(record, "gender"))
    min_age = coerce_number(resolve_field(record, "min_age"))
    max_age = coerce_number(resolve_field(record, "max_age"))
    if min_age is None and max_age is None:
        min_age, max_age = _parse_age_range(resolve_field(record, "age_range"))
    if min_age is not None and max_age is not None and min_age > max_age:
        logger.warning("Condition %r has minAge > maxAge; swapping", name)
        min_age, max_age = max_age, min_age
    if gender is None and gender_specific and infer_demographics:
        for label in (name, *aliases):
            gender = infer_gender_from_name(label)
            if gender:
                break
    return Demographics(gender=gender, min_age=min_age, max_age=max_age)


def _meta(record: Mapping) -> ConditionMeta:
    references = []
    for value in resolve_all(record, "references"):
        for link in coerce_text_list(value, split=None):
            if link not in references:
                references.append(link)
    risk = coerce_number(resolve_field(record, "risk"))
    if risk is not None:
        risk = min(5.0, max(0.0, risk))
    return ConditionMeta(
        category=_scalar_text(resolve_field(record, "category")),
        icd10=coerce_text_list(resolve_field(record, "icd10"), split=_CODE_SPLIT),
        references=tuple(references),
        rare=coerce_bool(resolve_field(record, "rare")),
        urgent=coerce_bool(resolve_field(record, "urgent")),
        gender_specific=coerce_bool(resolve_field(record, "gender_specific")),
        risk=risk,
    )


def _descriptive_text(record: Mapping, name: str) -> str:
    chunks = [name]
    for value in resolve_all(record, "description"):
        chunks.extend(coerce_text_list(value, split=None))
    chunks.extend(coerce_text_list(resolve_field(record, "pearls")))
    return "\n".join(chunks)


def infer_features_from_text(text: str, vocabulary: Iterable[str]) -> Dict[str, float]:
    """Whole-word hits of vocabulary symptoms in free text, at a moderate weight."""
    return {s: TEXT_MATCH_WEIGHT for s in vocabulary if whole_word_pattern(s).search(text)}


def infer_features_from_name(name: str, aliases=()) -> Dict[str, float]:
    return {s: NAME_RULE_WEIGHT for s in infer_symptoms_from_name(name, *aliases)}


class _Draft(NamedTuple):
    fields: dict
    text: str


def _draft_condition(record: Mapping, index: int, default_prevalence: float,
                     infer_demographics: bool) -> _Draft:
    source_name = _scalar_text(resolve_field(record, "name"))
    name = source_name or f"Condition {index + 1}"
    aliases = tuple(a for a in coerce_text_list(resolve_field(record, "aliases")) if a != name)

    source_id = _scalar_text(resolve_field(record, "id"))
    if source_id:
        cid = source_id
    elif source_name and _slug(source_name):
        cid = _slug(source_name)
    else:
        cid = f"cond_{index}"

    meta = _meta(record)
    prevalence = coerce_number(resolve_field(record, "prevalence"))
    if prevalence is None or prevalence < 0:
        prevalence = prevalence_from_risk(meta.risk) if meta.risk is not None else default_prevalence

    fields = dict(
        id=cid,
        name=name,
        aliases=aliases,
        demographics=_demographics(record, name, aliases, meta.gender_specific, infer_demographics),
        present=coerce_features(resolve_field(record, "present")),
        absent=coerce_features(resolve_field(record, "absent")),
        prevalence_weight=prevalence,
        pearls=coerce_text_list(resolve_field(record, "pearls")),
        red_flags=coerce_text_list(resolve_field(record, "red_flags")),
        study_treatment=coerce_text_list(resolve_field(record, "study_treatment")),
        meta=meta,
    )
    return _Draft(fields, _descriptive_text(record, name))


def build_knowledge_base(records, raw_vocabulary=None, default_symptoms=(),
                         infer_features: bool = True, infer_demographics: bool = True,
                         default_prevalence: float = 0.2) -> KnowledgeBase:
    """
    Normalize raw condition records into a KnowledgeBase.

    Records that are not mappings, or that fail validation, are logged and
    skipped. Duplicate ids keep the first record. When `infer_features` is
    off (strict mode) records without features stay featureless.
    """
    vocab = VocabularyBuilder(default_symptoms)
    vocab.extend(raw_vocabulary or ())

    drafts: List[_Draft] = []
    seen_ids = set()
    for index, record in enumerate(records or ()):
        if not isinstance(record, Mapping):
            logger.warning("Skipping condition record %d: expected an object, got %s",
                           index, type(record).__name__)
            continue
        try:
            draft = _draft_condition(record, index, default_prevalence, infer_demographics)
        except (ValidationError, ValueError, TypeError, OverflowError) as e:
            logger.warning("Skipping condition record %d: %s", index, e)
            continue
        cid = draft.fields["id"]
        if cid in seen_ids:
            logger.warning("Skipping condition record %d: duplicate id %r", index, cid)
            continue
        seen_ids.add(cid)
        drafts.append(draft)
        for key in (*draft.fields["present"], *draft.fields["absent"]):
            vocab.add(key)

    # inference runs against the vocabulary of the whole batch so that the
    # outcome does not depend on record order
    known = vocab.snapshot()
    conditions = []
    for draft in drafts:
        fields = draft.fields
        present = fields.pop("present")
        absent = fields.pop("absent")
        if not present and infer_features:
            present = infer_features_from_text(draft.text, known)
            if not present:
                present = infer_features_from_name(fields["name"], fields["aliases"])
            if present:
                logger.debug("Inferred %d features for %r", len(present), fields["name"])
        for key in present:
            vocab.add(key)
        try:
            conditions.append(Condition(features=Features(present=present, absent=absent), **fields))
        except ValidationError as e:
            logger.warning("Skipping condition %r: %s", fields["id"], e)

    kb = KnowledgeBase(tuple(conditions), vocab.build())
    logger.info("Knowledge base built: %d conditions, %d symptoms", len(kb.conditions), len(kb.vocabulary))
    return kb
