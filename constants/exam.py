SECTION_QUANTITATIVE = "quantitative"
SECTION_VERBAL = "verbal"
SECTIONS = (SECTION_QUANTITATIVE, SECTION_VERBAL)

TRACK_SCIENTIFIC = "scientific"
TRACK_LITERARY = "literary"
TRACKS = (TRACK_SCIENTIFIC, TRACK_LITERARY)

DIFFICULTIES = ("easy", "medium", "hard")

QUANTITATIVE_CATEGORIES = (
    "algebra",
    "geometry",
    "statistics",
    "ratio-proportion",
    "probability",
    "speed-time-distance",
)

VERBAL_CATEGORIES = (
    "reading-comprehension",
    "sentence-completion",
    "context-error",
    "analogy",
    "association-difference",
    "vocabulary",
)

CATEGORIES_BY_SECTION = {
    SECTION_QUANTITATIVE: QUANTITATIVE_CATEGORIES,
    SECTION_VERBAL: VERBAL_CATEGORIES,
}

# Question counts per section for a full 96-question exam
TRACK_DISTRIBUTION = {
    TRACK_SCIENTIFIC: {SECTION_QUANTITATIVE: 57, SECTION_VERBAL: 39},
    TRACK_LITERARY: {SECTION_QUANTITATIVE: 29, SECTION_VERBAL: 67},
}

EXAM_DIFFICULTY_MIX = {"easy": 0.3, "medium": 0.5, "hard": 0.2}

QUESTION_TYPES = {
    SECTION_QUANTITATIVE: ("mcq", "comparison", "diagram"),
    SECTION_VERBAL: ("reading", "analogy", "completion", "error", "odd-word"),
}

STRENGTH_THRESHOLD = 70
MAX_INSIGHTS = 3


def section_for_category(category: str):
    for section, categories in CATEGORIES_BY_SECTION.items():
        if category in categories:
            return section
    return None
