"""
Loading the condition dataset (diseases.json).

The document is read once at startup, either from disk or over HTTP. Any
failure raises DatasetLoadError; callers decide how to surface it.
"""

import json
import logging
import os
from collections.abc import Mapping
from typing import Any, List, Tuple

import requests

from errors import DatasetLoadError

logger = logging.getLogger(__name__)

CONDITION_KEYS = ("conditions", "items", "diseases")
VOCABULARY_KEYS = ("symptomVocabulary", "symptoms", "vocab")


def split_document(doc: Any) -> Tuple[List[Any], List[Any]]:
    """
    Return (condition records, raw vocabulary) from a parsed dataset document.

    Conditions live under the first array-valued key in CONDITION_KEYS, or the
    document is itself the array. The vocabulary is optional.
    """
    if isinstance(doc, list):
        return doc, []
    if not isinstance(doc, Mapping):
        raise DatasetLoadError(f"Dataset must be a JSON object or array, got {type(doc).__name__}")

    conditions = None
    for key in CONDITION_KEYS:
        if isinstance(doc.get(key), list):
            conditions = doc[key]
            break
    if conditions is None:
        raise DatasetLoadError("Dataset has no conditions array (expected one of %s)" % ", ".join(CONDITION_KEYS))

    vocab = []
    for key in VOCABULARY_KEYS:
        if isinstance(doc.get(key), list):
            vocab = doc[key]
            break
    return conditions, vocab


def _is_url(source: str) -> bool:
    return source.startswith("http://") or source.startswith("https://")


def load_document(source: str, timeout: float = 10.0) -> Any:
    """Fetch and parse the JSON dataset from a path or an http(s) URL."""
    if _is_url(source):
        try:
            resp = requests.get(source, timeout=timeout, headers={"Cache-Control": "no-store"})
            resp.raise_for_status()
            doc = resp.json()
        except requests.RequestException as e:
            raise DatasetLoadError(f"Could not fetch dataset from {source}: {e}") from e
        except ValueError as e:
            raise DatasetLoadError(f"Dataset at {source} is not valid JSON: {e}") from e
    else:
        if not os.path.exists(source):
            raise DatasetLoadError(f"Dataset file not found: {source}")
        try:
            with open(source, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, ValueError) as e:
            raise DatasetLoadError(f"Could not read dataset {source}: {e}") from e
    logger.info("Loaded dataset from %s", source)
    return doc
