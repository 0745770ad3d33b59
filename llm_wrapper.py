"""
Language-model explanations for an already computed ranking.

Provides:
- build_payload: minimal per-condition payload (names, matched/absent symptoms, red flags)
- call_openai_llm: calls OpenAI (if key present) or the mock; logs raw outputs
- parse_and_validate_json: robust JSON extraction + rescue for missing confidence
- get_explanation: orchestrates the above; never raises, returns an ExplanationResult

The explanation is supplementary. Whatever happens here, the ranked list the
caller already holds stays as it is.
"""

import json
import logging
import os
import re
from collections.abc import Mapping
from typing import Optional, Sequence

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from config import Settings, get_settings
from errors import ExplanationError
from pydantic_models import ExplanationResponse, ExplanationResult, RankedResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You are a clinical reasoning assistant.

You do NOT diagnose.
You do NOT provide medical advice or treatment.
You ONLY explain why conditions were ranked.

Rules:
- Use ONLY the provided data
- Do NOT invent sources
- State uncertainty clearly
- If red flags exist, say urgent medical evaluation may be required

Return valid JSON only.
"""

# literal with {payload} placeholder which we replace (not .format)
PROMPT_TEMPLATE = """
Explain why each condition was ranked. Output ONLY valid JSON of the form:

{"explanations": [
  {"condition": "", "supporting_symptoms": [], "contradicting_or_absent_symptoms": [],
   "comparison_to_other_conditions": "", "red_flags": [], "confidence": "Low | Moderate | High"}
], "disclaimer": "..."}

Payload:
{payload}
"""

DISCLAIMER = "Educational only. Not medical advice."


def _medline_link(references) -> Optional[str]:
    for ref in references:
        if "medlineplus" in ref.lower():
            return ref
    return None


def build_payload(input_text: str, ranked: Sequence) -> dict:
    """
    Reduce ranked conditions to what the model may see.

    Accepts RankedResult objects or the camelCase dicts a client posts back.
    """
    items = []
    for r in ranked:
        if isinstance(r, RankedResult):
            items.append({
                "name": r.name,
                "matchedSymptoms": list(r.matched_symptoms),
                "absentSymptoms": list(r.corroborating_negatives),
                "redFlags": list(r.reference.red_flags),
                "evidence": {"score": round(r.score, 3), "prevalenceWeight": r.reference.prevalence_weight},
                "medline": _medline_link(r.reference.meta.references),
            })
        elif isinstance(r, Mapping) and r.get("name"):
            items.append({
                "name": str(r["name"]),
                "matchedSymptoms": list(r.get("matchedSymptoms") or []),
                "absentSymptoms": list(r.get("absentSymptoms") or []),
                "redFlags": list(r.get("redFlags") or []),
                "evidence": r.get("evidence") or {},
                "medline": r.get("medline") or None,
            })
    return {"input": input_text or "", "rankedConditions": items}


def mock_llm(payload: dict) -> str:
    """Well-formed response built from the payload alone; used when no API key is set."""
    names = [c["name"] for c in payload["rankedConditions"]]
    explanations = []
    for c in payload["rankedConditions"]:
        n = len(c["matchedSymptoms"])
        explanations.append({
            "condition": c["name"],
            "supporting_symptoms": c["matchedSymptoms"],
            "contradicting_or_absent_symptoms": c["absentSymptoms"],
            "comparison_to_other_conditions": "Ranked among: " + ", ".join(names),
            "red_flags": c["redFlags"],
            "confidence": "High" if n >= 3 else "Moderate" if n == 2 else "Low",
        })
    return json.dumps({"explanations": explanations, "disclaimer": DISCLAIMER}, ensure_ascii=False)


def _append_raw_log(path: str, header: str, text: str):
    d = os.path.dirname(path)
    try:
        if d and not os.path.exists(d):
            os.makedirs(d, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"----{header}----\n")
            f.write(text + "\n")
    except OSError as e:
        logger.debug("Could not write raw LLM log %s: %s", path, e)


def call_openai_llm(payload: dict, settings: Settings) -> str:
    """
    Returns raw string (LLM output), either from OpenAI or the mock.
    Always appends the raw output to the raw log for debugging.
    Raises ExplanationError when the API call itself fails.
    """
    if not settings.use_openai:
        raw = mock_llm(payload)
        _append_raw_log(settings.raw_log_path, "MOCK CALL", raw)
        return raw

    user_msg = PROMPT_TEMPLATE.replace("{payload}", json.dumps(payload, indent=2, ensure_ascii=False))
    try:
        client = OpenAI(api_key=settings.openai_api_key, timeout=settings.openai_timeout)
        resp = client.chat.completions.create(
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            messages=[{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user_msg}],
        )
        text = resp.choices[0].message.content or ""
    except OpenAIError as e:
        _append_raw_log(settings.raw_log_path, "OPENAI_ERROR", str(e))
        logger.error("OpenAI explanation call failed: %s", e)
        raise ExplanationError(f"AI explanation failed: {e}") from e
    _append_raw_log(settings.raw_log_path, "CALL", text)
    return text


def _extract_json_block(raw: str) -> str:
    # strip triple-backtick fences if present
    if raw.startswith("```") and raw.endswith("```"):
        raw = "\n".join([l for l in raw.splitlines() if not l.strip().startswith("```")]).strip()

    # find largest balanced {...} or [...] block
    candidates = []
    for start_ch, end_ch in [("{", "}"), ("[", "]")]:
        for m in re.finditer(re.escape(start_ch), raw):
            si = m.start()
            depth = 0
            for j in range(si, len(raw)):
                if raw[j] == start_ch:
                    depth += 1
                elif raw[j] == end_ch:
                    depth -= 1
                    if depth == 0:
                        candidates.append(raw[si:j + 1])
                        break
    if not candidates:
        raise ExplanationError("Could not locate JSON in LLM output", raw=raw)
    return max(candidates, key=len)


def _load_lenient(s: str):
    try:
        return json.loads(s)
    except ValueError:
        s2 = re.sub(r",\s*([}\]])", r"\1", s)  # remove trailing commas
        try:
            return json.loads(s2)
        except ValueError:
            return json.loads(s2.replace("'", '"'))


def parse_and_validate_json(raw_text: str) -> ExplanationResponse:
    """
    Extract JSON from raw_text and validate it as an ExplanationResponse.
    Adds `confidence` to explanation entries if missing, and accepts a bare
    list or a `conditions` key in place of `explanations`.
    """
    raw = (raw_text or "").strip()
    candidate = _extract_json_block(raw)
    try:
        parsed = _load_lenient(candidate)
    except ValueError as e:
        raise ExplanationError(f"Invalid AI response: {e}", raw=raw_text) from e

    if isinstance(parsed, list):
        parsed = {"explanations": parsed}
    if not isinstance(parsed, dict):
        raise ExplanationError("Invalid AI response: expected an object", raw=raw_text)
    if "explanations" not in parsed:
        for key in ("conditions", "rankedConditions", "results"):
            if isinstance(parsed.get(key), list):
                parsed["explanations"] = parsed.pop(key)
                break

    # rescue entries missing confidence or using "name" for the condition
    rescued = False
    for item in parsed.get("explanations") or []:
        if not isinstance(item, dict):
            continue
        if "condition" not in item and "name" in item:
            item["condition"] = item.pop("name")
        if "confidence" not in item:
            item["confidence"] = "Low"
            rescued = True
    if rescued:
        parsed["notes"] = (str(parsed.get("notes", "")) + " parsed_and_rescued_confidence").strip()

    try:
        return ExplanationResponse(**parsed)
    except ValidationError as e:
        raise ExplanationError(f"Invalid AI response: {e.error_count()} validation errors", raw=raw_text) from e


def get_explanation(input_text: str, ranked: Sequence, settings: Optional[Settings] = None) -> ExplanationResult:
    """
    Primary orchestration:
    - build minimal payload
    - model call (or mock)
    - parse + validate
    Failures come back as ExplanationResult(ok=False, error=...), never as
    an empty success.
    """
    settings = settings or get_settings()
    payload = build_payload(input_text, ranked)
    if not payload["rankedConditions"]:
        return ExplanationResult(ok=False, error="no_ranked_conditions")

    try:
        raw = call_openai_llm(payload, settings)
    except ExplanationError as e:
        return ExplanationResult(ok=False, error="request_failed", raw=str(e))

    try:
        response = parse_and_validate_json(raw)
    except ExplanationError as e:
        logger.warning("Discarding LLM explanation: %s", e)
        return ExplanationResult(ok=False, error="invalid_response", raw=e.raw or raw)
    return ExplanationResult(ok=True, response=response, raw=raw)
