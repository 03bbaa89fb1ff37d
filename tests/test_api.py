import time

import httpx
import pytest
import pytest_asyncio

from api.main import app, get_generator, sign_token, verify_token
from core.config import settings
from db.session import get_db, get_redis

USER = 501


@pytest_asyncio.fixture
async def client(db, redis, generator):
    async def override_db():
        yield db

    async def override_redis():
        yield redis

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_redis] = override_redis
    app.dependency_overrides[get_generator] = lambda: generator

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        c.headers["X-Auth-Token"] = sign_token(USER)
        yield c

    app.dependency_overrides.clear()


def test_token_verification():
    token = sign_token(42)
    assert verify_token(token) == 42
    assert verify_token(token[:-1] + ("0" if token[-1] != "0" else "1")) is None
    assert verify_token("garbage") is None
    assert verify_token(sign_token(42, timestamp=int(time.time()) - settings.TOKEN_TTL_SECONDS - 10)) is None


@pytest.mark.asyncio
async def test_requires_auth(client):
    response = await client.get("/api/sessions", headers={"X-Auth-Token": ""})
    assert response.status_code == 401
    assert response.json() == {"error": "غير مصرح", "code": "UNAUTHORIZED"}


@pytest.mark.asyncio
async def test_exam_flow(client):
    response = await client.post("/api/exams", json={"track": "scientific"})
    assert response.status_code == 201
    body = response.json()
    session_id = body["session"]["id"]
    assert body["session"]["status"] == "in_progress"
    assert body["session"]["generated_batches"] == 1
    assert body["session"]["questions_count"] == 10
    assert all("answer_index" not in q for q in body["questions"])
    assert body["meta"]["provider"] == "fake"

    response = await client.post(f"/api/sessions/{session_id}/answers", json={"question_index": 0, "selected_answer": 1})
    assert response.status_code == 200
    assert response.json()["is_correct"] is True

    response = await client.post(f"/api/sessions/{session_id}/answers", json={"question_index": 0, "selected_answer": 1})
    assert response.status_code == 409

    response = await client.post(f"/api/sessions/{session_id}/pause", json={"remaining_time_seconds": 7000})
    assert response.status_code == 200
    assert response.json()["session"]["status"] == "paused"
    assert response.json()["message"] == "تم إيقاف الاختبار بنجاح. يمكنك استئنافه في أي وقت."

    response = await client.post(f"/api/sessions/{session_id}/resume")
    assert response.status_code == 200
    body = response.json()
    assert body["already_resumed"] is False
    assert body["needs_more_questions"] is True
    assert body["questions"][0]["answer_index"] == 1
    assert "answer_index" not in body["questions"][1]

    response = await client.post(f"/api/sessions/{session_id}/resume", headers={"Accept-Language": "en"})
    assert response.status_code == 200
    assert response.json()["already_resumed"] is True
    assert response.json()["message"] == "The exam is already in progress."

    response = await client.post(f"/api/sessions/{session_id}/questions", json={"batch_index": 1})
    assert response.status_code == 200
    body = response.json()
    assert body["generated_batches"] == 2
    assert body["meta"]["cache_hit"] is True

    response = await client.post(f"/api/sessions/{session_id}/questions", json={"batch_index": 5})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_BATCH_INDEX"

    response = await client.get(f"/api/sessions/{session_id}/generation")
    assert response.json()["summary"]["batches"] == 2

    response = await client.patch(f"/api/sessions/{session_id}", json={"action": "complete"})
    assert response.status_code == 200
    assert response.json()["session"]["status"] == "completed"
    assert response.json()["session"]["overall_score"] == 100

    response = await client.post(f"/api/sessions/{session_id}/pause")
    assert response.status_code == 400
    assert response.json()["error"] == "يمكن إيقاف الاختبارات الجارية فقط"


@pytest.mark.asyncio
async def test_practice_and_listing(client):
    response = await client.post(
        "/api/practice",
        json={"section": "verbal", "categories": ["analogy"], "difficulty": "easy", "question_count": 5},
    )
    assert response.status_code == 201
    session_id = response.json()["session"]["id"]

    response = await client.post(f"/api/sessions/{session_id}/timer", json={"time_spent_seconds": 30})
    assert response.json() == {"time_spent_seconds": 30, "remaining_seconds": None, "is_expired": False}

    response = await client.get("/api/sessions")
    assert [s["id"] for s in response.json()] == [session_id]

    response = await client.get(f"/api/sessions/{session_id}")
    assert response.status_code == 200
    assert response.json()["needs_more_questions"] is False

    response = await client.get("/api/sessions/unknown")
    assert response.status_code == 404
    assert response.json()["error"] == "لم يتم العثور على جلسة الاختبار"


@pytest.mark.asyncio
async def test_other_users_cannot_touch_a_session(client):
    response = await client.post("/api/exams", json={"track": "literary"})
    session_id = response.json()["session"]["id"]
    other = {"X-Auth-Token": sign_token(USER + 1)}

    assert (await client.get(f"/api/sessions/{session_id}", headers=other)).status_code == 404
    assert (await client.post(f"/api/sessions/{session_id}/pause", headers=other)).status_code == 403
    assert (await client.post(f"/api/sessions/{session_id}/resume", headers=other)).status_code == 403


@pytest.mark.asyncio
async def test_request_validation_is_localized(client):
    response = await client.post("/api/exams", json={"track": "medical"})
    assert response.status_code == 400
    assert response.json()["error"] == "بيانات غير صالحة"


@pytest.mark.asyncio
async def test_session_creation_is_rate_limited(client):
    for _ in range(settings.SESSION_CREATE_LIMIT):
        response = await client.post("/api/exams", json={"track": "scientific"})
        assert response.status_code == 201

    response = await client.post("/api/exams", json={"track": "scientific"})
    assert response.status_code == 429


@pytest.mark.asyncio
async def test_generation_failure_returns_503(client, generator):
    generator.fail_on = {0}
    response = await client.post("/api/exams", json={"track": "scientific"})
    assert response.status_code == 503
    assert response.json()["error"] == "فشل في إنشاء الأسئلة. يرجى المحاولة مرة أخرى."

    response = await client.get("/api/sessions", params={"status": "failed"})
    assert len(response.json()) == 1


@pytest.mark.asyncio
async def test_global_generation_metrics(client, generator):
    await client.post("/api/exams", json={"track": "scientific"})
    generator.fail_on = {0}
    await client.post("/api/exams", json={"track": "literary"})

    response = await client.get("/api/generation/metrics")
    assert response.status_code == 200
    summary = response.json()["summary"]
    assert summary["batches"] == 2
    assert summary["successful_batches"] == 1
    assert summary["failed_batches"] == 1

    response = await client.get("/api/generation/metrics", headers={"X-Auth-Token": ""})
    assert response.status_code == 401
