"""
AI Exercise Generation Service

Generates Spanish bird-vocabulary exercises with the OpenAI chat completions
API. The exercise cache service depends only on the ExerciseGenerator
protocol, so tests can substitute any object with a matching generate().
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)

from aves.core.config import settings
from aves.core.exceptions import GenerationFailed
from aves.core.http_client import get_http_client
from aves.models.enums import ExerciseType
from aves.services.user_context import UserContext


logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are an expert Spanish language tutor. "
    "Always respond with valid JSON only, no markdown formatting."
)


# ============== Generator Contract ==============

@dataclass
class GenerationResult:
    """A freshly generated exercise with its cost (USD) and latency (ms)."""
    exercise: Dict[str, Any]
    cost: float
    generation_time_ms: int


class ExerciseGenerator(Protocol):
    """Anything that can turn a user context into an exercise."""

    async def generate(
        self,
        context: UserContext,
        exercise_type: ExerciseType,
        topics: List[str],
    ) -> GenerationResult:
        ...


# ============== OpenAI Client ==============

_openai_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """
    Get or create the shared OpenAI client.

    Retries are handled by complete_json, so the SDK's own retries are off.

    Raises:
        GenerationFailed: If no API key is configured.
    """
    global _openai_client
    if _openai_client is None:
        if not settings.OPENAI_API_KEY:
            raise GenerationFailed(
                "OpenAI API key is required. Set OPENAI_API_KEY environment variable.",
                reason=GenerationFailed.UPSTREAM,
            )
        _openai_client = AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            http_client=get_http_client(),
            max_retries=0,
            timeout=settings.GENERATION_TIMEOUT_SECONDS,
        )
    return _openai_client


def close_openai_client() -> None:
    """Drop the shared client. The underlying pool is closed by close_http_client."""
    global _openai_client
    _openai_client = None


async def complete_json(prompt: str) -> Tuple[str, Any]:
    """
    Request a JSON-only chat completion with exponential backoff.

    Connection errors, timeouts and 5xx responses are retried up to
    GENERATION_MAX_ATTEMPTS attempts. Rate limits, auth failures and bad
    requests fail immediately.

    Args:
        prompt: User prompt for the completion.

    Returns:
        Tuple of (message content, usage object or None).

    Raises:
        GenerationFailed: With reason quota, timeout, upstream or
            malformed_response.
    """
    client = get_openai_client()
    max_attempts = max(1, settings.GENERATION_MAX_ATTEMPTS)

    for attempt in range(1, max_attempts + 1):
        try:
            response = await client.chat.completions.create(
                model=settings.OPENAI_MODEL,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=settings.OPENAI_MAX_TOKENS,
                temperature=settings.OPENAI_TEMPERATURE,
                response_format={"type": "json_object"},
            )
        except RateLimitError as e:
            logger.warning(f"OpenAI rate limit or quota exceeded: {e}")
            raise GenerationFailed(
                "OpenAI rate limit or quota exceeded",
                reason=GenerationFailed.QUOTA,
            ) from e
        except (APIConnectionError, InternalServerError) as e:
            if attempt < max_attempts:
                delay = settings.GENERATION_RETRY_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    f"OpenAI call failed (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)
                continue
            reason = (
                GenerationFailed.TIMEOUT
                if isinstance(e, APITimeoutError)
                else GenerationFailed.UPSTREAM
            )
            raise GenerationFailed(
                f"OpenAI call failed after {max_attempts} attempts: {e}",
                reason=reason,
            ) from e
        except APIStatusError as e:
            logger.error(f"OpenAI rejected the request ({e.status_code}): {e}")
            raise GenerationFailed(
                f"OpenAI rejected the request: {e}",
                reason=GenerationFailed.UPSTREAM,
            ) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GenerationFailed(
                "Empty response from OpenAI",
                reason=GenerationFailed.MALFORMED_RESPONSE,
            )
        return content, response.usage

    raise GenerationFailed("OpenAI call was not attempted", reason=GenerationFailed.UPSTREAM)


# ============== Response Parsing ==============

def parse_json_response(content: str) -> Dict[str, Any]:
    """
    Parse a model response as a JSON object, tolerating markdown fences.

    Raises:
        GenerationFailed: If the content is not a JSON object.
    """
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse OpenAI response: {content[:500]}")
        raise GenerationFailed(
            "Invalid JSON response from OpenAI",
            reason=GenerationFailed.MALFORMED_RESPONSE,
        ) from e

    if not isinstance(parsed, dict):
        raise GenerationFailed(
            "OpenAI response is not a JSON object",
            reason=GenerationFailed.MALFORMED_RESPONSE,
        )
    return parsed


def calculate_cost(usage: Any) -> float:
    """Price a completion from its token usage."""
    if usage is None:
        return 0.0
    prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
    completion_tokens = getattr(usage, "completion_tokens", 0) or 0
    cost = (
        prompt_tokens * settings.INPUT_TOKEN_COST
        + completion_tokens * settings.OUTPUT_TOKEN_COST
    )
    return round(cost, 6)


def generate_exercise_id(exercise_type: ExerciseType) -> str:
    return f"ai_{exercise_type.value}_{uuid.uuid4().hex}"


def _malformed(message: str) -> GenerationFailed:
    return GenerationFailed(
        f"Invalid {message} response from OpenAI",
        reason=GenerationFailed.MALFORMED_RESPONSE,
    )


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_unit(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and 0 <= value <= 1


# ============== Prompts ==============

def _profile(context: UserContext, topics: List[str]) -> str:
    weak = ", ".join(topics or context.weak_topics) or "none"
    mastered = ", ".join(context.mastered_topics) or "basic terms"
    return (
        "You are an expert Spanish language tutor specializing in bird vocabulary.\n\n"
        "User Profile:\n"
        f"- Level: {context.level.value}\n"
        f"- Current difficulty: {context.difficulty}/5\n"
        f"- Struggling with: {weak}\n"
        f"- Mastered: {mastered}\n\n"
    )


def _contextual_fill_prompt(context: UserContext, topics: List[str]) -> str:
    return _profile(context, topics) + f"""Create a fill-in-the-blank exercise that:
1. Uses bird vocabulary in a natural, conversational context
2. Reviews mastered content while focusing on weaker topics
3. Matches difficulty level {context.difficulty}/5
4. Includes 4 plausible Spanish word options (1 correct, 3 distractors)

Requirements:
- Sentence must have one blank marked with ___
- Use proper Spanish grammar with accents

Return ONLY valid JSON:
{{
  "sentence": "El cardenal tiene plumas ___ brillantes.",
  "correctAnswer": "rojas",
  "options": ["rojas", "azules", "verdes", "amarillas"],
  "context": "Cardinals are known for their bright red plumage.",
  "culturalNote": "In Spanish, color adjectives agree in gender with the noun."
}}"""


def _term_matching_prompt(context: UserContext, topics: List[str]) -> str:
    return _profile(context, topics) + """Create a term matching exercise with 5-8 Spanish-English pairs related to birds.

Requirements:
- Focus on bird anatomy, behavior, or habitat vocabulary
- Include at least one term from weak topics if available
- Use proper Spanish grammar with articles (el/la)

Return ONLY valid JSON:
{
  "spanishTerms": ["el pico", "las alas", "la cola"],
  "englishTerms": ["beak", "wings", "tail"],
  "correctPairs": [
    {"spanish": "el pico", "english": "beak"},
    {"spanish": "las alas", "english": "wings"},
    {"spanish": "la cola", "english": "tail"}
  ],
  "category": "Bird Anatomy"
}"""


def _visual_discrimination_prompt(context: UserContext, topics: List[str]) -> str:
    return _profile(context, topics) + """Create a visual discrimination exercise: the learner sees a Spanish
bird name and must pick the matching species among 4 pictures.

Requirements:
- Use common, easily photographed species
- Distractors should be visually similar species

Return ONLY valid JSON:
{
  "targetTerm": "cardenal",
  "species": ["cardinal", "bluebird", "robin", "sparrow"],
  "correctSpecies": "cardinal"
}"""


def _visual_identification_prompt(context: UserContext, topics: List[str]) -> str:
    return _profile(context, topics) + """Create a visual identification exercise: the learner clicks the part
of a bird picture named in Spanish.

Return ONLY valid JSON:
{
  "bird": "cardinal",
  "targetPart": "pico",
  "prompt": "Identifique el pico del pájaro",
  "pronunciation": "PEE-koh",
  "tip": "Look for the short, thick orange beak"
}"""


def _image_labeling_prompt(context: UserContext, topics: List[str]) -> str:
    return _profile(context, topics) + """Create an image labeling exercise for bird anatomy.

Requirements:
- Provide 4-6 anatomical terms to label
- Include normalized coordinates (0-1 range) for label positions

Return ONLY valid JSON:
{
  "imageUrl": "/images/birds/cardinal-anatomy.jpg",
  "labels": [
    {"term": "el pico", "correctPosition": {"x": 0.45, "y": 0.30}},
    {"term": "las alas", "correctPosition": {"x": 0.35, "y": 0.50}},
    {"term": "la cola", "correctPosition": {"x": 0.70, "y": 0.60}}
  ]
}"""


def _cultural_context_prompt(context: UserContext, topics: List[str]) -> str:
    return _profile(context, topics) + """Create a cultural context exercise: a short Spanish passage about the
role of a bird in a Spanish-speaking culture, followed by a comprehension question.

Return ONLY valid JSON:
{
  "passage": "El quetzal es el ave nacional de Guatemala...",
  "question": "¿Qué representa el quetzal en Guatemala?",
  "options": ["la libertad", "la lluvia", "la guerra", "el invierno"],
  "correctAnswer": "la libertad",
  "region": "Guatemala"
}"""


# ============== Response Shaping ==============

def _shape_contextual_fill(parsed: Dict[str, Any]) -> Dict[str, Any]:
    sentence = parsed.get("sentence")
    answer = parsed.get("correctAnswer")
    options = parsed.get("options")
    if not _non_empty_str(sentence) or "___" not in sentence:
        raise _malformed("contextual fill")
    if not isinstance(options, list) or len(options) < 2 or answer not in options:
        raise _malformed("contextual fill")

    return {
        "sentence": sentence,
        "correctAnswer": answer,
        "options": options,
        "instructions": "Complete the sentence by selecting the correct Spanish word.",
        "prompt": parsed.get("context") or sentence,
        "metadata": {"culturalNote": parsed.get("culturalNote")},
    }


def _shape_term_matching(parsed: Dict[str, Any]) -> Dict[str, Any]:
    spanish = parsed.get("spanishTerms")
    english = parsed.get("englishTerms")
    pairs = parsed.get("correctPairs")
    if not isinstance(spanish, list) or not isinstance(english, list) or not isinstance(pairs, list):
        raise _malformed("term matching")
    if len(spanish) != len(english) or len(spanish) < 3:
        raise _malformed("term matching")
    # one pair per term
    if len(pairs) != len(spanish):
        raise _malformed("term matching")
    for pair in pairs:
        if not isinstance(pair, dict):
            raise _malformed("term matching")
        if pair.get("spanish") not in spanish or pair.get("english") not in english:
            raise _malformed("term matching")

    return {
        "spanishTerms": spanish,
        "englishTerms": english,
        "correctPairs": pairs,
        "instructions": "Match each Spanish term with its English translation.",
        "metadata": {"category": parsed.get("category")},
    }


def _shape_visual_discrimination(parsed: Dict[str, Any]) -> Dict[str, Any]:
    target = parsed.get("targetTerm")
    species = parsed.get("species")
    correct = parsed.get("correctSpecies")
    if not _non_empty_str(target) or not isinstance(species, list) or len(species) < 2:
        raise _malformed("visual discrimination")
    if correct not in species:
        raise _malformed("visual discrimination")

    options = [
        {"id": f"opt{index + 1}", "species": name}
        for index, name in enumerate(species)
    ]
    return {
        "targetTerm": target,
        "options": options,
        "correctOptionId": f"opt{species.index(correct) + 1}",
        "instructions": f"Select the image that matches the Spanish term: {target}",
    }


def _shape_visual_identification(parsed: Dict[str, Any]) -> Dict[str, Any]:
    target_part = parsed.get("targetPart")
    if not _non_empty_str(target_part) or not _non_empty_str(parsed.get("bird")):
        raise _malformed("visual identification")

    return {
        "prompt": parsed.get("prompt") or f"Identifique el {target_part} del pájaro",
        "instructions": "Click on the bird image to identify the requested anatomical feature.",
        "metadata": {
            "bird": parsed["bird"],
            "targetPart": target_part,
            "pronunciation": parsed.get("pronunciation"),
            "tip": parsed.get("tip"),
        },
    }


def _shape_image_labeling(parsed: Dict[str, Any]) -> Dict[str, Any]:
    image_url = parsed.get("imageUrl")
    labels = parsed.get("labels")
    if not _non_empty_str(image_url) or not isinstance(labels, list) or len(labels) < 3:
        raise _malformed("image labeling")
    for label in labels:
        position = label.get("correctPosition") if isinstance(label, dict) else None
        if not _non_empty_str(label.get("term") if isinstance(label, dict) else None):
            raise _malformed("image labeling")
        if not isinstance(position, dict) or not _is_unit(position.get("x")) or not _is_unit(position.get("y")):
            raise _malformed("image labeling")

    return {
        "imageUrl": image_url,
        "labels": [
            {
                "id": f"label_{index}",
                "term": label["term"],
                "correctPosition": {
                    "x": label["correctPosition"]["x"],
                    "y": label["correctPosition"]["y"],
                },
            }
            for index, label in enumerate(labels)
        ],
        "instructions": "Drag and drop the Spanish terms to label the bird anatomy correctly.",
    }


def _shape_cultural_context(parsed: Dict[str, Any]) -> Dict[str, Any]:
    passage = parsed.get("passage")
    question = parsed.get("question")
    options = parsed.get("options")
    answer = parsed.get("correctAnswer")
    if not _non_empty_str(passage) or not _non_empty_str(question):
        raise _malformed("cultural context")
    if not isinstance(options, list) or len(options) < 2 or answer not in options:
        raise _malformed("cultural context")

    return {
        "passage": passage,
        "question": question,
        "options": options,
        "correctAnswer": answer,
        "instructions": "Read the passage and answer the question.",
        "metadata": {"region": parsed.get("region")},
    }


PromptBuilder = Callable[[UserContext, List[str]], str]
Shaper = Callable[[Dict[str, Any]], Dict[str, Any]]

EXERCISE_BUILDERS: Dict[ExerciseType, Tuple[PromptBuilder, Shaper]] = {
    ExerciseType.CONTEXTUAL_FILL: (_contextual_fill_prompt, _shape_contextual_fill),
    ExerciseType.TERM_MATCHING: (_term_matching_prompt, _shape_term_matching),
    ExerciseType.VISUAL_DISCRIMINATION: (_visual_discrimination_prompt, _shape_visual_discrimination),
    ExerciseType.VISUAL_IDENTIFICATION: (_visual_identification_prompt, _shape_visual_identification),
    ExerciseType.IMAGE_LABELING: (_image_labeling_prompt, _shape_image_labeling),
    ExerciseType.CULTURAL_CONTEXT: (_cultural_context_prompt, _shape_cultural_context),
}


# ============== OpenAI Generator ==============

class OpenAIExerciseGenerator:
    """ExerciseGenerator backed by the OpenAI chat completions API."""

    async def generate(
        self,
        context: UserContext,
        exercise_type: ExerciseType,
        topics: List[str],
    ) -> GenerationResult:
        """
        Generate one exercise of the given type.

        Args:
            context: Personalization context (level, difficulty, topics).
            exercise_type: Resolved exercise type.
            topics: Topic tags from the request.

        Returns:
            GenerationResult with the exercise payload, cost and latency.

        Raises:
            GenerationFailed: On upstream errors or an unusable response.
        """
        build_prompt, shape = EXERCISE_BUILDERS[exercise_type]
        started = time.perf_counter()

        content, usage = await complete_json(build_prompt(context, topics))
        body = shape(parse_json_response(content))

        generation_time_ms = int((time.perf_counter() - started) * 1000)
        cost = calculate_cost(usage)

        metadata = {
            "difficulty": context.difficulty,
            "topics": list(topics),
            "userLevel": context.level.value,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
        }
        metadata.update(body.pop("metadata", {}))

        exercise = {
            "id": generate_exercise_id(exercise_type),
            "type": exercise_type.value,
            **body,
            "metadata": metadata,
        }

        logger.info(
            f"Generated {exercise_type.value} exercise for {context.user_id} "
            f"(cost ${cost:.6f}, {generation_time_ms}ms)"
        )
        return GenerationResult(
            exercise=exercise,
            cost=cost,
            generation_time_ms=generation_time_ms,
        )
