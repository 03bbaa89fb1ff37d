import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from constants.exam import QUESTION_TYPES, SECTION_QUANTITATIVE
from core.config import settings
from core.exceptions import GenerationError, ValidationError
from core.logger import logger
from services.batch_plan import blueprint
from services.generation_context import GenerationContext
from services.question_schema import Question, QuestionFormatError, normalize_question


@dataclass(frozen=True)
class BatchParams:
    session_id: str
    batch_index: int
    batch_size: int
    section: str
    categories: List[str]
    track: Optional[str] = None
    difficulty: Optional[str] = None


@dataclass
class BatchUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    estimated_cost: float = 0.0


@dataclass
class BatchMeta:
    provider: str
    model: str
    cache_hit: bool
    duration_ms: int
    batch_id: str


@dataclass
class BatchResult:
    questions: List[Question]
    updated_context: GenerationContext
    usage: BatchUsage
    meta: BatchMeta
    rejected: int = 0
    duplicates: int = 0
    raw_count: int = field(default=0)


def estimate_cost(input_tokens: int, output_tokens: int, cached_tokens: int = 0) -> float:
    """USD cost of one call; the cached share of the input is billed at the cached rate."""
    cached = min(cached_tokens, input_tokens)
    uncached = input_tokens - cached
    cost = (
        uncached * settings.COST_INPUT_PER_MILLION
        + cached * settings.COST_CACHED_INPUT_PER_MILLION
        + output_tokens * settings.COST_OUTPUT_PER_MILLION
    ) / 1_000_000
    return round(cost, 6)


def build_system_prompt(section: str, track: Optional[str]) -> str:
    """
    Static per (section, track) so consecutive batches of a session share
    the same prompt prefix and hit the provider's prompt cache.
    """
    section_label = "Quantitative (القسم الكمي)" if section == SECTION_QUANTITATIVE else "Verbal (القسم اللفظي)"
    track_line = f"Track: {track}\n" if track else ""
    types = ", ".join(QUESTION_TYPES.get(section, ("mcq",)))
    return f"""You are an expert author of Saudi General Aptitude Test (GAT, Qudurat) questions.
Section: {section_label}
{track_line}All question text, choices and explanations MUST be in Modern Standard Arabic.

Return ONLY the following JSON object, nothing else:
{{
  "questions": [
    {{
      "section": "{section}",
      "topic": "category slug from the request",
      "difficulty": "easy | medium | hard",
      "question_type": "one of: {types}",
      "question_text": "Question stem",
      "choices": ["choice 1", "choice 2", "choice 3", "choice 4"],
      "correct_answer": "exact text of the correct choice",
      "explanation": "Step by step solution",
      "solving_strategy": "Short strategy",
      "tip": "Short exam tip",
      "passage": null,
      "diagram_config": null
    }}
  ]
}}

RULES:
1. Every question has EXACTLY 4 distinct choices.
2. correct_answer MUST be copied exactly from choices.
3. Spread the correct answer position across the batch.
4. Follow the requested topic and difficulty of every slot, in order.
5. Never repeat a question from an earlier batch of the same exam."""


def build_user_prompt(params: BatchParams, context: GenerationContext) -> str:
    slots = blueprint(params.batch_size, params.categories, params.difficulty)
    lines = [f"Batch {params.batch_index + 1}: generate {params.batch_size} new questions."]
    if context.generated_ids:
        lines.append(f"{len(context.generated_ids)} questions were already generated for this session; do not repeat them.")
    lines.append("Slots:")
    for i, slot in enumerate(slots, 1):
        lines.append(f"{i}. topic={slot['topic']} difficulty={slot['difficulty']}")
    return "\n".join(lines)


class BatchGenerator:
    """Generates one batch of questions per call against an OpenAI-compatible chat API."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.client = client
        self.api_key = settings.GENERATION_API_KEY if api_key is None else api_key
        self.model = model or settings.GENERATION_MODEL
        self.base_url = base_url or settings.GENERATION_BASE_URL
        self.provider = settings.GENERATION_PROVIDER

    def _log_rate_limits(self, headers: httpx.Headers):
        """Extract and log provider rate limit information."""
        remaining_requests = headers.get("x-ratelimit-remaining-requests")
        remaining_tokens = headers.get("x-ratelimit-remaining-tokens")

        if remaining_requests or remaining_tokens:
            logger.info(
                "Provider rate limits",
                rem_req=remaining_requests,
                rem_tok=remaining_tokens,
                reset_req=headers.get("x-ratelimit-reset-requests"),
                reset_tok=headers.get("x-ratelimit-reset-tokens"),
            )

    def _check_params(self, params: BatchParams, context: GenerationContext):
        if params.batch_size <= 0:
            raise ValidationError(details={"batch_size": params.batch_size})
        if not params.categories:
            raise ValidationError(details={"categories": "empty"})
        if context.last_batch_index != params.batch_index - 1:
            raise ValidationError(
                "INVALID_BATCH_INDEX",
                details={"batch_index": params.batch_index, "last_batch_index": context.last_batch_index},
            )

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.client is not None:
            return await self.client.post(self.base_url, headers=headers, json=payload)
        async with httpx.AsyncClient(timeout=settings.GENERATION_TIMEOUT_SECONDS) as client:
            return await client.post(self.base_url, headers=headers, json=payload)

    async def generate_batch(self, params: BatchParams, context: GenerationContext) -> BatchResult:
        """
        Generate batch ``params.batch_index`` given everything generated so far.

        Pure with respect to session state: the caller persists the returned
        questions and ``updated_context``. Raises ``GenerationError`` on any
        provider failure or when no usable question comes back.
        """
        self._check_params(params, context)
        if not self.api_key:
            logger.error("Generation provider is not configured", session_id=params.session_id)
            raise GenerationError("GENERATION_UNAVAILABLE")

        batch_id = f"{params.session_id}:{params.batch_index}:{uuid.uuid4().hex[:8]}"
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": build_system_prompt(params.section, params.track)},
                {"role": "user", "content": build_user_prompt(params, context)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": settings.GENERATION_TEMPERATURE,
            "max_completion_tokens": settings.GENERATION_MAX_TOKENS,
        }

        started = time.monotonic()
        try:
            response = await self._post(payload)
        except httpx.HTTPError as e:
            logger.error("Generation request failed", batch_id=batch_id, error=str(e))
            raise GenerationError(details={"batch_index": params.batch_index}) from e

        self._log_rate_limits(response.headers)

        if response.status_code != 200:
            logger.error("Generation API error", batch_id=batch_id, status=response.status_code, error=response.text[:500])
            raise GenerationError(details={"batch_index": params.batch_index, "status": response.status_code})

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
            if not isinstance(content, str):
                raise TypeError(f"message content is {type(content).__name__}, expected str")
            usage = self._read_usage(data.get("usage") or {})
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error("Malformed generation response", batch_id=batch_id, error=str(e))
            raise GenerationError(details={"batch_index": params.batch_index}) from e

        duration_ms = int((time.monotonic() - started) * 1000)
        raw_questions = self._parse_response(content)
        questions, rejected, duplicates = self._validate_questions(raw_questions, params, context)

        if not questions:
            logger.error(
                "Batch produced no usable questions",
                batch_id=batch_id, raw=len(raw_questions), rejected=rejected, duplicates=duplicates,
            )
            raise GenerationError(details={"batch_index": params.batch_index})

        questions = questions[:params.batch_size]
        meta = BatchMeta(
            provider=self.provider,
            model=data.get("model") or self.model,
            cache_hit=usage.cached_tokens > 0,
            duration_ms=duration_ms,
            batch_id=batch_id,
        )
        logger.info(
            "Batch generated",
            session_id=params.session_id,
            batch_index=params.batch_index,
            count=len(questions),
            rejected=rejected,
            duplicates=duplicates,
            cache_hit=meta.cache_hit,
            duration_ms=duration_ms,
            cost=usage.estimated_cost,
        )
        return BatchResult(
            questions=questions,
            updated_context=context.advance(params.batch_index, [q.id for q in questions]),
            usage=usage,
            meta=meta,
            rejected=rejected,
            duplicates=duplicates,
            raw_count=len(raw_questions),
        )

    def _read_usage(self, usage: Dict[str, Any]) -> BatchUsage:
        input_tokens = int(usage.get("prompt_tokens", usage.get("input_tokens", 0)) or 0)
        output_tokens = int(usage.get("completion_tokens", usage.get("output_tokens", 0)) or 0)
        details = usage.get("prompt_tokens_details") or {}
        cached_tokens = int(details.get("cached_tokens", usage.get("cache_read_input_tokens", 0)) or 0)
        return BatchUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_tokens=cached_tokens,
            estimated_cost=estimate_cost(input_tokens, output_tokens, cached_tokens),
        )

    def _parse_response(self, content: str) -> List[Dict]:
        """Parse JSON from the model response, handling code fences, wrappers and truncation."""
        content = content.strip()

        def try_parse(s):
            try:
                parsed = json.loads(s)
            except json.JSONDecodeError:
                # Truncated array: keep everything up to the last complete object
                if s.startswith('[') and not s.endswith(']'):
                    last_obj_end = s.rfind('}')
                    if last_obj_end != -1:
                        try:
                            return json.loads(s[:last_obj_end + 1] + ']')
                        except json.JSONDecodeError:
                            return None
                return None
            if isinstance(parsed, dict):
                inner = parsed.get("questions")
                return inner if isinstance(inner, list) else None
            return parsed if isinstance(parsed, list) else None

        # 1. Direct parse
        parsed = try_parse(content)
        if parsed is not None:
            return parsed

        # 2. Markdown code block
        for fence in ("```json", "```"):
            if fence in content:
                start = content.find(fence) + len(fence)
                end = content.find("```", start)
                block = content[start:end] if end > start else content[start:]
                parsed = try_parse(block.strip())
                if parsed is not None:
                    return parsed

        # 3. Bare array somewhere in the text
        if "[" in content:
            start = content.find("[")
            end = content.rfind("]") + 1
            parsed = try_parse(content[start:end] if end > start else content[start:])
            if parsed is not None:
                return parsed

        logger.error("Failed to parse generation response", content=content[:500])
        return []

    def _validate_questions(self, raw_questions: List[Dict], params: BatchParams, context: GenerationContext):
        """Normalize raw items and drop invalid ones and repeats of earlier questions."""
        validated = []
        seen = set()
        rejected = 0
        duplicates = 0
        slots = blueprint(params.batch_size, params.categories, params.difficulty)

        for i, raw in enumerate(raw_questions):
            slot = slots[i] if i < len(slots) else {}
            try:
                question = normalize_question(
                    raw,
                    section=params.section,
                    topic=slot.get("topic"),
                    difficulty=slot.get("difficulty"),
                )
            except QuestionFormatError as e:
                rejected += 1
                logger.warning("Question validation failed", batch_index=params.batch_index, error=str(e)[:200])
                continue

            if question.section != params.section:
                rejected += 1
                continue
            if context.contains(question.id) or question.id in seen:
                duplicates += 1
                continue

            seen.add(question.id)
            validated.append(question)

        return validated, rejected, duplicates
