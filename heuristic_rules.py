"""
Lookup tables for best-effort inference and free-text handling.

Nothing here is authoritative: the tables only fill gaps in records that
carry no symptom features, and the normalizer skips them in strict mode.
"""

import re

# Free-text phrasings rewritten to vocabulary terms before tokenizing
FREE_TEXT_SYNONYMS = {
    "throwing up": "vomiting",
    "throw up": "vomiting",
    "feverish": "fever",
    "breathless": "breathlessness",
    "tired": "fatigue",
    "tiredness": "fatigue",
    "exhausted": "fatigue",
    "dizzy": "dizziness",
    "itchy": "itching",
    "coughing": "cough",
    "sneezes": "sneezing",
    "feaver": "fever",
    "temprature": "temperature",
}

# Inferred from the condition name when a record has no features at all.
# Each entry: (pattern on name/aliases, canonical symptom set)
NAME_SYMPTOM_RULES = [
    (re.compile(r"pneumon", re.I),
     ("fever", "cough", "shortness of breath", "chest pain", "fatigue")),
    (re.compile(r"influenza|\bflu\b", re.I),
     ("fever", "cough", "body aches", "fatigue", "headache", "sore throat")),
    (re.compile(r"common cold|rhinitis|coryza", re.I),
     ("runny nose", "sneezing", "sore throat", "cough")),
    (re.compile(r"pharyngitis|tonsillitis|strep", re.I),
     ("sore throat", "fever", "swollen lymph nodes")),
    (re.compile(r"bronchi(tis|olitis)", re.I),
     ("cough", "chest discomfort", "fatigue", "shortness of breath")),
    (re.compile(r"asthma", re.I),
     ("wheezing", "shortness of breath", "cough", "chest tightness")),
    (re.compile(r"covid|coronavirus", re.I),
     ("fever", "cough", "fatigue", "loss of smell", "shortness of breath")),
    (re.compile(r"gastroenteritis|food poisoning|stomach flu", re.I),
     ("nausea", "vomiting", "diarrhea", "abdominal pain")),
    (re.compile(r"appendicitis", re.I),
     ("abdominal pain", "nausea", "vomiting", "fever")),
    (re.compile(r"migraine", re.I),
     ("headache", "nausea", "sensitivity to light")),
    (re.compile(r"dengue", re.I),
     ("fever", "headache", "rash", "joint pain", "body aches")),
    (re.compile(r"malaria", re.I),
     ("fever", "chills", "sweating", "headache")),
    (re.compile(r"urinary tract|cystitis|\buti\b", re.I),
     ("painful urination", "frequent urination", "lower abdominal pain")),
    (re.compile(r"an(a)?emi", re.I),
     ("fatigue", "weakness", "pale skin", "dizziness")),
    (re.compile(r"hypertension|high blood pressure", re.I),
     ("headache", "dizziness")),
]

# Anatomical terms that pin a gender-specific condition to one sex
GENDER_NAME_PATTERNS = [
    (re.compile(r"prostat|testic|testis|scrot|penile|penis|erectile|epididym", re.I), "male"),
    (re.compile(r"ovar|uter|cervix|cervical cancer|endometri|vagin|vulv|"
                r"pregnan|menstru|gestation|eclampsia|placent", re.I), "female"),
]

_TOKEN = re.compile(r"[^\W_]+")


def clean_symptom(name):
    """Canonical symptom key: lowercase, inner whitespace collapsed."""
    return " ".join(str(name).split()).lower()


def infer_symptoms_from_name(*labels):
    """Union of the symptom sets whose pattern matches any label, in table order."""
    found = []
    for pattern, symptoms in NAME_SYMPTOM_RULES:
        if any(label and pattern.search(label) for label in labels):
            for s in symptoms:
                if s not in found:
                    found.append(s)
    return found


def infer_gender_from_name(name):
    for pattern, gender in GENDER_NAME_PATTERNS:
        if name and pattern.search(name):
            return gender
    return None


def whole_word_pattern(phrase):
    return re.compile(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)", re.I)


def normalize_text(text, synonyms=FREE_TEXT_SYNONYMS):
    text = (text or "").lower()
    for k, v in synonyms.items():
        text = whole_word_pattern(k).sub(v, text)
    return text


def tokenize(text, synonyms=FREE_TEXT_SYNONYMS):
    """Lowercase word tokens split on non-alphanumeric boundaries (any script)."""
    return _TOKEN.findall(normalize_text(text, synonyms))
