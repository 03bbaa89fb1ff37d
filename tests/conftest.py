"""
Pytest configuration and fixtures for the exam prep service tests.
"""
import sys
import os
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.exceptions import GenerationError, ValidationError  # noqa: E402
from models.base import Base  # noqa: E402
from models.session import StudySession  # noqa: E402,F401
from models.answer import SessionAnswer  # noqa: E402,F401
from services.generation_service import BatchMeta, BatchResult, BatchUsage  # noqa: E402
from services.question_schema import normalize_question  # noqa: E402

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


class FakeClock:
    """Controllable replacement for utils.clock.utcnow."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class FakeRedis:
    """In-memory subset of redis.asyncio.Redis used by the services."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        value = self.data.get(key)
        return None if value is None else str(value)

    async def incr(self, key):
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    async def ttl(self, key):
        return self.ttls.get(key, -1)

    async def rpush(self, key, *values):
        self.data.setdefault(key, []).extend(values)
        return len(self.data[key])

    async def ltrim(self, key, start, end):
        items = self.data.get(key, [])
        end = len(items) if end == -1 else end + 1
        self.data[key] = items[start:end] if start >= 0 else items[max(0, len(items) + start):end]
        return True

    async def lrange(self, key, start, end):
        items = self.data.get(key, [])
        end = len(items) if end == -1 else end + 1
        return list(items[start:end])

    async def hincrby(self, key, field, amount=1):
        bucket = self.data.setdefault(key, {})
        bucket[field] = str(int(float(bucket.get(field, 0))) + amount)
        return int(bucket[field])

    async def hincrbyfloat(self, key, field, amount=1.0):
        bucket = self.data.setdefault(key, {})
        bucket[field] = str(float(bucket.get(field, 0)) + amount)
        return float(bucket[field])

    async def hgetall(self, key):
        return dict(self.data.get(key, {}))

    async def aclose(self):
        pass


def make_raw_question(section: str, topic: str, n: int, difficulty: str = "medium") -> dict:
    return {
        "section": section,
        "topic": topic,
        "difficulty": difficulty,
        "question_type": "mcq",
        "question_text": f"سؤال رقم {n} في {topic}",
        "choices": [f"{n}-أ", f"{n}-ب", f"{n}-ج", f"{n}-د"],
        "correct_answer": f"{n}-ب",
        "explanation": f"شرح السؤال {n}",
    }


class FakeGenerator:
    """Stands in for BatchGenerator; every answer key is choice 1."""

    def __init__(self, fail_on=(), cache_hit_after_first=True):
        self.fail_on = set(fail_on)
        self.cache_hit_after_first = cache_hit_after_first
        self.calls = []
        self.counter = 0

    async def generate_batch(self, params, context):
        self.calls.append(params)
        if context.last_batch_index != params.batch_index - 1:
            raise ValidationError("INVALID_BATCH_INDEX")
        if params.batch_index in self.fail_on:
            raise GenerationError()

        questions = []
        for i in range(params.batch_size):
            self.counter += 1
            topic = params.categories[i % len(params.categories)]
            raw = make_raw_question(params.section, topic, self.counter, params.difficulty or "medium")
            questions.append(normalize_question(raw))

        cached = 800 if self.cache_hit_after_first and params.batch_index > 0 else 0
        return BatchResult(
            questions=questions,
            updated_context=context.advance(params.batch_index, [q.id for q in questions]),
            usage=BatchUsage(input_tokens=1000, output_tokens=2000, cached_tokens=cached, estimated_cost=0.03),
            meta=BatchMeta(
                provider="fake",
                model="fake-model",
                cache_hit=cached > 0,
                duration_ms=1500,
                batch_id=f"{params.session_id}:{params.batch_index}",
            ),
        )


@pytest_asyncio.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def make_generator():
    """The fake generator class, for tests that need failures or a subclass."""
    return FakeGenerator


@pytest.fixture
def sample_raw_questions():
    """Raw questions in the three shapes the normalizer accepts."""
    return {
        "canonical": {
            "section": "quantitative",
            "topic": "algebra",
            "difficulty": "easy",
            "questionType": "mcq",
            "stem": "ما قيمة س إذا كان 2س = 8؟",
            "choices": ["2", "4", "6", "8"],
            "answerIndex": 1,
            "explanation": "س = 8 ÷ 2 = 4",
        },
        "v3": {
            "section": "verbal",
            "topic": "analogy",
            "difficulty": "medium",
            "question_type": "analogy",
            "question_text": "قلم : كتابة",
            "choices": ["مقص : قص", "باب : خشب", "ماء : نهر", "شمس : نهار"],
            "correct_answer": "مقص : قص",
            "explanation": "علاقة أداة بوظيفتها",
        },
        "quiz": {
            "question": "What is 2+2?",
            "options": ["3", "4", "5", "6"],
            "correct_option_id": 1,
        },
    }
