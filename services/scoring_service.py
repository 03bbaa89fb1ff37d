from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Sequence

from constants.exam import MAX_INSIGHTS, SECTION_QUANTITATIVE, SECTION_VERBAL, STRENGTH_THRESHOLD


@dataclass
class CategoryScore:
    category: str
    score: int
    total_questions: int
    correct_answers: int


@dataclass
class ScoreReport:
    verbal_score: int = 0
    quantitative_score: int = 0
    overall_score: int = 0
    strengths: List[CategoryScore] = field(default_factory=list)
    weaknesses: List[CategoryScore] = field(default_factory=list)
    category_breakdown: List[CategoryScore] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _percent(correct: int, total: int) -> int:
    if not total:
        return 0
    return round(100 * correct / total)


def _get(item: Any, key: str):
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def compute_scores(answers: Sequence[Any], questions: Sequence[Dict[str, Any]]) -> ScoreReport:
    """
    Aggregate answers into section, overall and per-category scores.

    ``answers`` are rows or dicts with ``question_index`` and ``is_correct``;
    ``questions`` is the session's ordered question list. Answers pointing
    past the end of the list only count toward the overall score.
    """
    if not answers:
        return ScoreReport()

    sections = {SECTION_VERBAL: [0, 0], SECTION_QUANTITATIVE: [0, 0]}
    categories: Dict[str, List[int]] = {}
    correct_total = 0

    for answer in answers:
        is_correct = bool(_get(answer, "is_correct"))
        correct_total += is_correct

        index = _get(answer, "question_index")
        if index is None or not 0 <= index < len(questions):
            continue
        question = questions[index]

        section = question.get("section")
        if section in sections:
            sections[section][0] += is_correct
            sections[section][1] += 1

        topic = question.get("topic")
        if topic:
            bucket = categories.setdefault(topic, [0, 0])
            bucket[0] += is_correct
            bucket[1] += 1

    breakdown = [
        CategoryScore(category=topic, score=_percent(c, t), total_questions=t, correct_answers=c)
        for topic, (c, t) in categories.items()
    ]
    strengths = sorted(
        (s for s in breakdown if s.score >= STRENGTH_THRESHOLD),
        key=lambda s: s.score, reverse=True,
    )[:MAX_INSIGHTS]
    weaknesses = sorted(
        (s for s in breakdown if s.score < STRENGTH_THRESHOLD),
        key=lambda s: s.score,
    )[:MAX_INSIGHTS]

    return ScoreReport(
        verbal_score=_percent(*sections[SECTION_VERBAL]),
        quantitative_score=_percent(*sections[SECTION_QUANTITATIVE]),
        overall_score=_percent(correct_total, len(answers)),
        strengths=strengths,
        weaknesses=weaknesses,
        category_breakdown=breakdown,
    )
