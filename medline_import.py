"""
Fill medline.db from the MedlinePlus health-topics search service.

    python medline_import.py Influenza Asthma "Dengue fever" Malaria
"""

import argparse
import html
import logging
import re
import xml.etree.ElementTree as ET
from typing import Optional

import requests

from config import get_settings
from errors import MetadataLookupError
from metadata_store import MetadataStore
from pydantic_models import MetadataRecord

logger = logging.getLogger(__name__)

MEDLINE_SEARCH_URL = "https://wsearch.nlm.nih.gov/ws/query"
DEFAULT_TERMS = ["Influenza", "Asthma", "Dengue fever", "Malaria"]

_TAG = re.compile(r"<[^>]+>")


def _clean(text: str) -> str:
    # search hits come back wrapped in <span class="qt0"> highlight markup
    return " ".join(html.unescape(_TAG.sub("", text or "")).split())


def _split(text: str) -> list:
    return [s.strip() for s in _clean(text).split(";") if s.strip()]


def parse_search_result(xml_text: str) -> Optional[MetadataRecord]:
    """Metadata of the first document in a MedlinePlus search response, or None."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise MetadataLookupError(f"Unparseable MedlinePlus response: {e}") from e
    doc = root.find(".//document")
    if doc is None:
        return None

    def pick(key):
        for content in doc.findall("content"):
            if content.get("name") == key:
                return "".join(content.itertext())
        return ""

    name = _clean(pick("title"))
    if not name:
        return None
    return MetadataRecord(
        name=name,
        aliases=_split(pick("alsoCalled")),
        icd10=_split(pick("icd10cm")),
        medline=doc.get("url") or _clean(pick("url")) or None,
    )


def fetch_medline(term: str, session=None, timeout: float = 10.0) -> Optional[MetadataRecord]:
    http = session or requests
    try:
        resp = http.get(MEDLINE_SEARCH_URL, params={"db": "healthTopics", "term": term}, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise MetadataLookupError(f"MedlinePlus query for {term!r} failed: {e}") from e
    return parse_search_result(resp.text)


def import_terms(store: MetadataStore, terms, session=None) -> int:
    """Fetch and store each term; one failing term does not stop the rest."""
    store.init_db()
    imported = 0
    for term in terms:
        try:
            record = fetch_medline(term, session=session)
        except MetadataLookupError as e:
            logger.warning("%s", e)
            continue
        if record is None:
            logger.info("No MedlinePlus topic for %r", term)
            continue
        store.upsert(term, record)
        imported += 1
    logger.info("Imported %d of %d terms into %s", imported, len(terms), store.db_path)
    return imported


def main(argv=None):
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Import MedlinePlus topics into the metadata table.")
    parser.add_argument("terms", nargs="*", default=DEFAULT_TERMS)
    parser.add_argument("--db", default=settings.database_path)
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return import_terms(MetadataStore(args.db), args.terms)


if __name__ == "__main__":
    main()
