import pytest

from normalizer import SymptomVocabulary
from pydantic_models import Condition, Features, Query
from ranking import free_text_symptoms, rank


def scores(results):
    return [r.score for r in results]


def test_weight_accumulation(make_condition):
    kb = [make_condition("flu", present={"fever": 1, "cough": 0.5}, prevalence=0.2)]
    assert rank(kb, (), Query(selected_symptoms={"fever"}))[0].score == pytest.approx(1.2)
    assert rank(kb, (), Query(selected_symptoms={"fever", "cough"}))[0].score == pytest.approx(1.7)


def test_absent_symptom_corroboration(make_condition):
    kb = [make_condition("measles_free", absent={"rash": 1}, prevalence=0.1)]
    denied = rank(kb, (), Query(explicit_negatives={"rash"}))
    assert denied[0].score == pytest.approx(0.6)
    assert denied[0].corroborating_negatives == ("rash",)

    contradicted = rank(kb, (), Query(selected_symptoms={"rash"}, explicit_negatives={"rash"}))
    assert contradicted[0].score == pytest.approx(0.1)
    assert contradicted[0].corroborating_negatives == ()


def test_age_outside_range_is_excluded(make_condition):
    kb = [make_condition("adult_only", present={"fever": 5}, min_age=40)]
    q = Query(age=10, selected_symptoms={"fever"})
    assert rank(kb, (), q) == []

    shown = rank(kb, (), q, show_zero_scores=True)
    assert len(shown) == 1
    assert shown[0].score == 0
    assert shown[0].excluded is True


def test_max_age_and_sex_constraints(make_condition):
    kb = [
        make_condition("child", present={"rash": 1}, max_age=12),
        make_condition("male_only", present={"rash": 1}, gender="male"),
        make_condition("anyone", present={"rash": 1}),
    ]
    ids = [r.condition_id for r in rank(kb, (), Query(age=30, sex="female", selected_symptoms={"rash"}))]
    assert ids == ["anyone"]
    ids = [r.condition_id for r in rank(kb, (), Query(age=8, sex="male", selected_symptoms={"rash"}))]
    assert ids == ["child", "male_only", "anyone"]


def test_top_n_truncation_and_ordering(make_condition):
    kb = [make_condition(f"c{i}", present={"fever": i + 1}) for i in range(10)]
    results = rank(kb, (), Query(selected_symptoms={"fever"}))
    assert len(results) == 6
    assert all(a > b for a, b in zip(scores(results), scores(results)[1:]))
    assert results[0].condition_id == "c9"
    assert len(rank(kb, (), Query(selected_symptoms={"fever"}), top_n=3)) == 3


def test_ties_keep_input_order(make_condition):
    kb = [
        make_condition("first", present={"cough": 1}),
        make_condition("stronger", present={"cough": 2}),
        make_condition("second", present={"cough": 1}),
    ]
    ids = [r.condition_id for r in rank(kb, (), Query(selected_symptoms={"cough"}))]
    assert ids == ["stronger", "first", "second"]


def test_ranking_is_deterministic(make_condition):
    kb = [make_condition(f"c{i}", present={s: 1 for s in ("fever", "cough", "rash")[: i % 3 + 1]})
          for i in range(9)]
    q1 = Query(selected_symptoms=["rash", "fever", "cough"], explicit_negatives=["nausea"])
    q2 = Query(selected_symptoms=["cough", "rash", "fever"], explicit_negatives=["nausea"])
    assert rank(kb, (), q1) == rank(kb, (), q2)
    assert rank(kb, (), q1) == rank(kb, (), q1)


def test_prevalence_alone_ranks_but_zero_scores_drop(make_condition):
    kb = [make_condition("common", prevalence=0.3), make_condition("unlikely", prevalence=0)]
    assert [r.condition_id for r in rank(kb, (), Query())] == ["common"]
    near = rank(kb, (), Query(), show_near_misses=True)
    assert [r.condition_id for r in near] == ["common", "unlikely"]
    assert near[1].excluded is False


def test_free_text_tokens_join_selection(make_condition):
    vocab = SymptomVocabulary(["fever", "cough", "fièvre"])
    kb = [make_condition("flu", present={"fever": 1, "fièvre": 1})]
    q = Query(selected_symptoms={"cough"}, free_text="I have a FEVER, and fièvre!")
    result = rank(kb, vocab, q)[0]
    assert result.matched_symptoms == ("fever", "fièvre")
    assert q.selected_symptoms == frozenset({"cough"})


def test_free_text_synonyms_and_unknown_words():
    vocab = SymptomVocabulary(["fever", "vomiting"])
    assert free_text_symptoms("feeling feverish and throwing up, banana", vocab) == {"fever", "vomiting"}
    assert free_text_symptoms("", vocab) == frozenset()


def test_vocabulary_terms_are_not_rewritten_as_synonyms():
    vocab = SymptomVocabulary(["coughing", "tired", "dizzy"])
    assert free_text_symptoms("coughing and tired and dizzy", vocab) == {"coughing", "tired", "dizzy"}

    both = SymptomVocabulary(["dizzy", "dizziness", "fever"])
    assert free_text_symptoms("Dizzy and feverish", both) == {"dizzy", "dizziness", "fever"}


def test_query_symptoms_collapse_inner_whitespace(make_condition):
    q = Query(symptoms=["Sore  Throat", "  "], negatives="runny\tnose")
    assert q.selected_symptoms == frozenset({"sore throat"})
    assert q.explicit_negatives == frozenset({"runny nose"})
    kb = [make_condition("strep", present={"sore throat": 1})]
    assert rank(kb, (), q)[0].matched_symptoms == ("sore throat",)


def test_empty_knowledge_base():
    assert rank([], (), Query(selected_symptoms={"fever"})) == []


def test_bad_weights_contribute_nothing():
    broken = Condition.model_construct(
        id="broken",
        name="Broken",
        features=Features.model_construct(present={"fever": "lots", "cough": 1}, absent={}),
        prevalence_weight=0.2,
    )
    result = rank([broken], (), Query(selected_symptoms={"fever", "cough"}))[0]
    assert result.score == pytest.approx(1.2)


def test_inputs_are_not_mutated(make_condition):
    c = make_condition("flu", present={"fever": 1}, absent={"rash": 1})
    before = c.model_dump()
    q = Query(selected_symptoms={"fever"}, explicit_negatives={"rash"}, free_text="cough")
    rank([c], ("cough",), q)
    assert c.model_dump() == before
    assert q.selected_symptoms == frozenset({"fever"})


def test_result_references_condition(make_condition):
    c = make_condition("flu", present={"fever": 1})
    r = rank([c], (), Query(selected_symptoms={"fever"}))[0]
    assert r.reference is c
    assert (r.condition_id, r.name) == ("flu", "Flu")
