import pytest

from services.question_schema import (
    QuestionFormatError,
    fingerprint,
    load_stored_question,
    normalize_question,
)


def test_canonical_camel_case(sample_raw_questions):
    q = normalize_question(sample_raw_questions["canonical"])
    assert q.section == "quantitative"
    assert q.topic == "algebra"
    assert q.question_type == "mcq"
    assert q.answer_index == 1
    assert q.id == fingerprint(q.stem, q.choices)


def test_v3_correct_answer_text(sample_raw_questions):
    q = normalize_question(sample_raw_questions["v3"])
    assert q.stem == "قلم : كتابة"
    assert q.answer_index == 0
    assert q.question_type == "analogy"


def test_quiz_shape_needs_section_and_topic(sample_raw_questions):
    with pytest.raises(QuestionFormatError):
        normalize_question(sample_raw_questions["quiz"])

    q = normalize_question(sample_raw_questions["quiz"], section="quantitative", topic="algebra", difficulty="hard")
    assert q.stem == "What is 2+2?"
    assert q.choices == ["3", "4", "5", "6"]
    assert q.answer_index == 1
    assert q.difficulty == "hard"


def test_section_inferred_from_topic():
    q = normalize_question({
        "topic": "vocabulary",
        "stem": "مرادف كلمة شجاع",
        "choices": ["جبان", "مقدام", "ضعيف", "خائف"],
        "answer_index": 1,
    })
    assert q.section == "verbal"


@pytest.mark.parametrize("patch", [
    {"choices": ["a", "b", "c"]},
    {"answer_index": 7},
    {"answer_index": None, "correct_answer": "not a choice"},
    {"stem": "   "},
    {"section": "science"},
    {"difficulty": "extreme"},
    {"choices": ["a", "", "c", "d"]},
])
def test_invalid_questions_are_rejected(sample_raw_questions, patch):
    raw = dict(sample_raw_questions["canonical"])
    raw.pop("answerIndex")
    raw["answer_index"] = 1
    raw.update(patch)
    with pytest.raises(QuestionFormatError):
        normalize_question(raw)


def test_letter_answers_and_extra_choices():
    q = normalize_question({
        "section": "quantitative",
        "topic": "geometry",
        "question_text": "مساحة مربع طول ضلعه 3",
        "choices": ["6", "9", "12", "3", "27"],
        "correct_answer": "B",
    })
    assert q.choices == ["6", "9", "12", "3"]
    assert q.answer_index == 1


def test_fingerprint_ignores_whitespace_and_case():
    assert fingerprint("What  is X?", ["A", "B", "C", "D"]) == fingerprint("what is x?", ["a", "b", "c", " d"])
    assert fingerprint("What is X?", ["A", "B", "C", "D"]) != fingerprint("What is Y?", ["A", "B", "C", "D"])


def test_public_view_hides_answer(sample_raw_questions):
    view = normalize_question(sample_raw_questions["canonical"]).public_view()
    assert "answer_index" not in view
    assert "explanation" not in view
    assert view["stem"].startswith("ما قيمة")


def test_stored_question_keeps_its_id(sample_raw_questions):
    raw = dict(sample_raw_questions["v3"], id="legacy-42")
    assert load_stored_question(raw).id == "legacy-42"
