# app.py - Flask backend
import logging

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from config import Settings, get_settings
from dataset import load_document, split_document
from errors import DatasetLoadError, MetadataLookupError
from llm_wrapper import get_explanation
from metadata_store import MetadataStore
from normalizer import build_knowledge_base
from pydantic_models import Query
from ranking import rank

logger = logging.getLogger(__name__)


def _ranked_json(r):
    c = r.reference
    return {
        "conditionId": r.condition_id,
        "name": r.name,
        "score": round(r.score, 4),
        "excluded": r.excluded,
        "matchedSymptoms": list(r.matched_symptoms),
        "absentSymptoms": list(r.corroborating_negatives),
        "aliases": list(c.aliases),
        "redFlags": list(c.red_flags),
        "pearls": list(c.pearls),
        "studyTreatment": list(c.study_treatment),
        "meta": c.meta.model_dump(mode="json"),
    }


def create_app(settings: Settings = None) -> Flask:
    settings = settings or get_settings()
    app = Flask(__name__)
    CORS(app)

    app.config["SETTINGS"] = settings
    app.config["DATASET"] = None
    app.config["KB"] = None
    app.config["DATASET_ERROR"] = None

    # the dataset is loaded once; a failure leaves the data endpoints at 503
    try:
        doc = load_document(settings.dataset_path)
        records, vocab = split_document(doc)
        app.config["DATASET"] = doc
        app.config["KB"] = build_knowledge_base(
            records,
            raw_vocabulary=vocab,
            default_symptoms=settings.default_symptoms,
            infer_features=not settings.strict_mode,
            infer_demographics=settings.infer_demographics,
            default_prevalence=settings.default_prevalence,
        )
    except DatasetLoadError as e:
        logger.error("Medical database unavailable: %s", e)
        app.config["DATASET_ERROR"] = str(e)

    store = MetadataStore(settings.database_path)
    try:
        store.init_db()
    except MetadataLookupError as e:
        logger.error("%s", e)
    app.config["STORE"] = store

    def unavailable():
        return jsonify({"error": "Medical database unavailable", "detail": app.config["DATASET_ERROR"]}), 503

    @app.route("/", methods=["GET"])
    def index():
        return "Meduli symptom checker: POST /api/rank with {'age':..,'sex':..,'symptoms':[..]}"

    @app.route("/data", methods=["GET"])
    def data():
        if app.config["DATASET"] is None:
            return unavailable()
        return jsonify(app.config["DATASET"])

    @app.route("/api/symptoms", methods=["GET"])
    def symptoms():
        kb = app.config["KB"]
        if kb is None:
            return unavailable()
        return jsonify({"symptomVocabulary": kb.vocabulary.as_list()})

    @app.route("/api/rank", methods=["POST"])
    def rank_conditions():
        kb = app.config["KB"]
        if kb is None:
            return unavailable()
        body = request.get_json(force=True, silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "Please POST a JSON object."}), 400
        try:
            query = Query(**body)
        except ValidationError as e:
            return jsonify({"error": "Invalid query", "detail": [err["msg"] for err in e.errors()]}), 400

        ranked = rank(kb.conditions, kb.vocabulary, query, top_n=settings.top_n,
                      show_zero_scores=settings.show_zero_scores,
                      show_near_misses=settings.show_near_misses)
        return jsonify({"results": [_ranked_json(r) for r in ranked]})

    @app.route("/api/condition", methods=["GET"])
    def condition():
        q = request.args.get("q", "")
        try:
            record = app.config["STORE"].lookup(q)
        except MetadataLookupError:
            return jsonify({"error": "Metadata lookup failed"}), 503
        return jsonify(record.model_dump() if record else None)

    @app.route("/api/explain", methods=["POST"])
    def explain():
        body = request.get_json(force=True, silent=True) or {}
        ranked = body.get("rankedConditions") if isinstance(body, dict) else None
        if not isinstance(ranked, list) or not ranked:
            return jsonify({"error": "No ranked conditions provided"}), 400

        result = get_explanation(body.get("input") or "", ranked, settings)
        if result.ok:
            return jsonify(result.response.model_dump())
        if result.error == "invalid_response":
            return jsonify({"error": "Invalid AI response", "raw": result.raw}), 502
        if result.error == "no_ranked_conditions":
            return jsonify({"error": "No ranked conditions provided"}), 400
        return jsonify({"error": "AI explanation failed"}), 500

    return app


if __name__ == "__main__":
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    create_app(settings).run(host=settings.host, port=settings.port)
