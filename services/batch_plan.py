"""
Batch layout for exam and practice sessions.

An exam is generated section by section: all quantitative batches first,
then verbal. Each section is cut into batches of ``batch_size`` with the
last batch of a section possibly smaller. Practice sessions are a single
section cut the same way.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from constants.exam import (
    CATEGORIES_BY_SECTION,
    EXAM_DIFFICULTY_MIX,
    SECTION_QUANTITATIVE,
    SECTION_VERBAL,
    TRACK_DISTRIBUTION,
)


@dataclass(frozen=True)
class PlannedBatch:
    index: int
    section: str
    size: int
    categories: List[str] = field(default_factory=list)
    difficulty: Optional[str] = None


def section_split(track: str, total_questions: int) -> Dict[str, int]:
    """Split ``total_questions`` between sections following the track ratio."""
    base = TRACK_DISTRIBUTION[track]
    base_total = sum(base.values())
    if total_questions == base_total:
        return dict(base)
    quant = round(total_questions * base[SECTION_QUANTITATIVE] / base_total)
    return {SECTION_QUANTITATIVE: quant, SECTION_VERBAL: total_questions - quant}


def exam_plan(track: str, total_questions: int, batch_size: int) -> List[PlannedBatch]:
    split = section_split(track, total_questions)
    plan = []
    for section in (SECTION_QUANTITATIVE, SECTION_VERBAL):
        remaining = split[section]
        while remaining > 0:
            size = min(batch_size, remaining)
            plan.append(PlannedBatch(
                index=len(plan),
                section=section,
                size=size,
                categories=list(CATEGORIES_BY_SECTION[section]),
            ))
            remaining -= size
    return plan


def practice_plan(
    section: str,
    categories: Sequence[str],
    difficulty: str,
    total_questions: int,
    batch_size: int,
) -> List[PlannedBatch]:
    plan = []
    remaining = total_questions
    while remaining > 0:
        size = min(batch_size, remaining)
        plan.append(PlannedBatch(
            index=len(plan),
            section=section,
            size=size,
            categories=list(categories),
            difficulty=difficulty,
        ))
        remaining -= size
    return plan


def distribute(count: int, weights: Dict[str, float]) -> Dict[str, int]:
    """
    Round ``count * weight`` for every key; the heaviest key absorbs the
    rounding difference so the counts always sum to ``count``.
    """
    if not weights or count <= 0:
        return {key: 0 for key in weights}
    total_weight = sum(weights.values()) or 1.0
    counts = {key: round(count * w / total_weight) for key, w in weights.items()}
    heaviest = max(weights, key=lambda k: weights[k])
    counts[heaviest] += count - sum(counts.values())
    if counts[heaviest] < 0:
        # Over-allocation can leave the heaviest key negative on tiny counts
        deficit = -counts[heaviest]
        counts[heaviest] = 0
        for key in sorted(counts, key=lambda k: counts[k], reverse=True):
            take = min(deficit, counts[key])
            counts[key] -= take
            deficit -= take
            if not deficit:
                break
    return counts


def difficulty_mix(count: int) -> Dict[str, int]:
    counts = {
        "easy": round(count * EXAM_DIFFICULTY_MIX["easy"]),
        "hard": round(count * EXAM_DIFFICULTY_MIX["hard"]),
    }
    counts["medium"] = count - counts["easy"] - counts["hard"]
    if counts["medium"] < 0:
        counts["easy"] += counts["medium"]
        counts["medium"] = 0
    return counts


def blueprint(size: int, categories: Sequence[str], difficulty: Optional[str] = None) -> List[Dict[str, str]]:
    """
    Build per-question slots ``{"topic", "difficulty"}`` for one batch.

    Topics are weighted equally. Without a fixed difficulty the exam mix
    (30% easy, 50% medium, 20% hard) is applied.
    """
    topic_counts = distribute(size, {c: 1.0 for c in categories})
    topics = [topic for topic, n in topic_counts.items() for _ in range(n)]

    if difficulty:
        levels = [difficulty] * size
    else:
        mix = difficulty_mix(size)
        levels = [level for level in ("easy", "medium", "hard") for _ in range(mix[level])]

    return [{"topic": t, "difficulty": d} for t, d in zip(topics, levels)]
