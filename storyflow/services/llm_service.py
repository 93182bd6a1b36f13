"""LLM service - writes story segments with DashScope (通义千问).

The generator asks the model for a JSON segment, repairs what it can in the
returned choices and falls back to canned content from
``data/fallback_stories.yaml`` when the model or its output is unusable, so
callers always get a playable ``StoryResponse``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from pathlib import Path

import yaml

from storyflow.config import settings
from storyflow.core.game_state import (
    PHASE_GUIDANCE,
    create_initial_game_state,
    generate_story_context,
    get_story_phase,
)
from storyflow.core.identifiers import repair_choice
from storyflow.exceptions import GenerationServiceError, InvalidChoiceError
from storyflow.schemas.story import StoryGenerationRequest, StoryResponse

logger = logging.getLogger(__name__)

FALLBACK_FILE = Path(__file__).parent.parent / "data" / "fallback_stories.yaml"
MAX_ATTEMPTS = 2

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def _get_generation():
    """Lazy import of dashscope.Generation to avoid import-time crashes in test."""
    import dashscope
    from dashscope import Generation

    dashscope.api_key = settings.DASHSCOPE_API_KEY
    return Generation


GENRE_PROMPTS = {
    "fantasy": "You are a master storyteller creating immersive fantasy adventures with rich magical worlds, "
               "compelling characters and meaningful choices.",
    "mystery": "You are a skilled mystery writer crafting engaging detective stories with clues, "
               "suspicious characters and twists that make sense.",
    "sci-fi": "You are a visionary science fiction author exploring technology, human nature and "
              "the ethics of scientific advancement.",
    "horror": "You are a master of psychological horror building tension and atmospheric dread.",
    "romance": "You are a romance writer creating emotionally engaging stories about connection and growth.",
    "thriller": "You are a thriller writer creating fast-paced, high-stakes suspense.",
}

CHALLENGE_HINTS = {
    "casual": "Keep conflicts clear and choices straightforward.",
    "challenging": "Include complex moral dilemmas and strategic decisions.",
}

RESPONSE_SCHEMA = """Always respond with valid JSON matching this schema:
{
  "story_text": "string (200-400 words)",
  "choices": [
    {
      "id": "A",
      "text": "string (10-50 words)",
      "slug": "snake_case identifier like 'trust_stranger'",
      "consequences": ["directives such as add_flag:met_wizard, modify_relationship:wizard:10, add_item:key"],
      "traits_impact": {"riskTaking|empathy|pragmatism|creativity|leadership": -2..2}
    }
  ],
  "game_state": {"act": 1, "flags": [], "relationships": {}, "inventory": [],
                 "personality_traits": {"riskTaking": 50, "empathy": 50, "pragmatism": 50,
                                        "creativity": 50, "leadership": 50}},
  "is_ending": false
}
Provide exactly 3 choices (A, B, C), each with a unique slug."""

STRICT_JSON_HINT = (
    "\n\nSTRICT JSON (previous attempt failed): double quotes only, no trailing commas, "
    "no comments, no text outside the JSON object."
)


class LLMStoryGenerator:
    def __init__(self, rng: random.Random | None = None):
        self.model = settings.LLM_MODEL
        self._rng = rng or random.Random()
        self._fallbacks: dict | None = None

    # --- Prompting ---

    def _build_system_prompt(self, request: StoryGenerationRequest, attempt: int) -> str:
        genre_prompt = GENRE_PROMPTS.get(request.genre, GENRE_PROMPTS["fantasy"])
        challenge_hint = CHALLENGE_HINTS.get(request.challenge, "")
        strict = STRICT_JSON_HINT if attempt > 1 else ""
        return f"{genre_prompt} {challenge_hint}\n\n{RESPONSE_SCHEMA}{strict}"

    def _build_user_prompt(self, request: StoryGenerationRequest) -> str:
        if not request.is_continuation:
            return (
                f"Begin a new {request.genre} story ({request.length} length, "
                f"{request.challenge} difficulty). Open with a hook and offer the first decision."
            )

        phase = get_story_phase(request.current_step, request.length)
        return (
            f"Continue this {request.genre} story ({request.length} length, {request.challenge} difficulty).\n\n"
            f"Story so far:\n{generate_story_context(request.game_state)}\n"
            f"Current step: {request.current_step}\n"
            f"Previous choice: {request.previous_choice or 'None'}\n\n"
            f"Story phase: {phase.upper()} - {PHASE_GUIDANCE[phase]}\n"
            "Acknowledge the previous choice's consequences and advance the plot meaningfully."
        )

    async def _call_model(self, system_prompt: str, user_prompt: str) -> str:
        Generation = _get_generation()
        response = await asyncio.to_thread(
            Generation.call,
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            result_format="message",
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
        )
        if response.status_code != 200:
            raise GenerationServiceError(
                f"LLM API error: {response.status_code} - {response.message}",
                status_code=response.status_code,
            )
        return response.output.choices[0].message.content

    # --- Parsing ---

    @staticmethod
    def parse_story_response(content: str) -> StoryResponse:
        """Parse model output into a ``StoryResponse``.

        Raises ``ValueError`` (including pydantic's ``ValidationError``) for
        malformed JSON and ``InvalidChoiceError`` for unusable choices.
        """
        data = json.loads(_FENCE_RE.sub("", content.strip()))
        if not isinstance(data, dict):
            raise ValueError("Story response must be a JSON object")

        raw_choices = data.get("choices")
        if not isinstance(raw_choices, list) or not 1 <= len(raw_choices) <= 4:
            raise InvalidChoiceError(f"Expected 1-4 choices, got {raw_choices!r:.80}")
        choices = [repair_choice(raw, i) for i, raw in enumerate(raw_choices)]
        if len({c.id for c in choices}) != len(choices):
            raise InvalidChoiceError("Choice ids must be unique")

        return StoryResponse.model_validate({**data, "choices": choices})

    # --- Fallbacks ---

    def _load_fallbacks(self) -> dict:
        if self._fallbacks is None:
            with open(FALLBACK_FILE, "r", encoding="utf-8") as f:
                self._fallbacks = yaml.safe_load(f) or {}
        return self._fallbacks

    def fallback_content(self, request: StoryGenerationRequest) -> StoryResponse:
        """Canned segment: a genre opening, or a generic bridge mid-story."""
        fallbacks = self._load_fallbacks()

        if not request.is_continuation:
            openings = fallbacks["openings"]
            opening = openings.get(request.genre) or openings["fantasy"]
            return StoryResponse(
                story_text=opening["story_text"],
                choices=opening["choices"],
                game_state=create_initial_game_state(request.genre),
            )

        bridge = self._rng.choice(fallbacks["bridges"])
        state = request.game_state
        act = state.act
        if request.current_step > 3 and act == 1:
            act = 2
        elif request.current_step > 6 and act == 2:
            act = 3
        flags = state.flags if "bridge_segment" in state.flags else state.flags + ("bridge_segment",)
        return StoryResponse(
            story_text=bridge["story_text"],
            choices=bridge["choices"],
            game_state=state.model_copy(update={"act": act, "flags": flags}),
        )

    # --- Entry point ---

    async def generate(self, request: StoryGenerationRequest) -> StoryResponse:
        """Write the next story segment for ``request``. Never raises for model failures."""
        user_prompt = self._build_user_prompt(request)
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                content = await self._call_model(self._build_system_prompt(request, attempt), user_prompt)
                return self.parse_story_response(content)
            except (ValueError, InvalidChoiceError) as e:
                logger.warning(
                    "Unusable story output for session %s (attempt %d/%d): %s",
                    request.session_id, attempt, MAX_ATTEMPTS, e,
                )
            except GenerationServiceError as e:
                logger.warning("Story generation failed for session %s: %s", request.session_id, e)
                if e.is_rate_limited:
                    break
            except Exception:
                logger.exception("Story generation crashed for session %s", request.session_id)
                break

        logger.warning("Serving fallback content for session %s", request.session_id)
        return self.fallback_content(request)


llm_story_generator = LLMStoryGenerator()


def get_story_generator() -> LLMStoryGenerator:
    """FastAPI dependency that returns the narrative generator."""
    return llm_story_generator
