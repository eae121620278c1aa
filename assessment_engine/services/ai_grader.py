"""
AI grading capability

One AIGrader interface with one provider adapter selected from settings at
startup. Provider SDKs are blocking, so every call is pushed off the event
loop with asyncio.to_thread. Any provider or parsing failure surfaces as
ExternalCapabilityUnavailable, and the engine falls back to manual grading.
"""
import asyncio
import json
import logging
from typing import Any, List, Optional

from pydantic import ValidationError

from assessment_engine.config import Settings, settings as default_settings
from assessment_engine.exceptions import ExternalCapabilityUnavailable
from assessment_engine.schemas.grading import AIGradeResult, GeneratedQuestion, GenerateQuestionsRequest

logger = logging.getLogger(__name__)


GRADING_SYSTEM_PROMPT = """
You are a fair and experienced university instructor grading a student's short
written answer. Judge correctness of key concepts, completeness and clarity.
Partial credit is allowed. Never reward an empty or off-topic answer.
"""

GENERATION_SYSTEM_PROMPT = """
You are an expert educator writing quiz questions for university students.
Every question must be unambiguous and answerable from the topic alone.
"""


def strip_json_fence(text: str) -> str:
    """Remove a markdown code fence wrapped around a JSON reply"""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def build_grading_prompt(question_text: str, student_answer: str, model_answer: Optional[str] = None) -> str:
    reference = f"**Model Answer:** {model_answer}\n" if model_answer else ""
    return f"""
**Question:** {question_text}
{reference}**Student's Answer:** {student_answer}

Grade the student's answer as a percentage from 0 to 100.

Return ONLY valid JSON (no markdown):
{{
  "score_percentage": 85,
  "feedback": "Good understanding of the main concept. Missing a detail about...",
  "strengths": ["..."],
  "improvements": ["..."]
}}
"""


def build_generation_prompt(request: GenerateQuestionsRequest) -> str:
    types = ", ".join(t.value for t in request.question_types)
    language = "Arabic" if request.language == "ar" else "English"
    return f"""
Write EXACTLY {request.count} {request.difficulty.value} questions in {language} about:

{request.topic}

Allowed question types: {types}
- MULTIPLE_CHOICE: 4 options, exactly one with "is_correct": true
- TRUE_FALSE: the two options "True" and "False", exactly one correct
- SHORT_ANSWER: no options; put the model answer in "explanation"

Return ONLY valid JSON in this exact format (no markdown, no preamble):
{{
  "questions": [
    {{
      "type": "MULTIPLE_CHOICE",
      "text": "Question text here?",
      "difficulty": "{request.difficulty.value}",
      "points": 1,
      "explanation": "Why the correct option is correct",
      "options": [{{"text": "Option A", "is_correct": true}}, {{"text": "Option B", "is_correct": false}}]
    }}
  ]
}}
"""


class AIGrader:
    """
    Base class for AI providers

    Subclasses implement _complete(), a blocking call returning the raw model
    text for a system prompt, a user prompt and a temperature.
    """

    provider = "none"

    def __init__(self, grading_temperature: float = 0.3, generation_temperature: float = 0.8):
        self.grading_temperature = grading_temperature
        self.generation_temperature = generation_temperature

    @property
    def configured(self) -> bool:
        return True

    def _complete(self, system_prompt: str, prompt: str, temperature: float) -> str:
        raise NotImplementedError

    async def _complete_json(self, system_prompt: str, prompt: str, temperature: float) -> Any:
        try:
            text = await asyncio.to_thread(self._complete, system_prompt, prompt, temperature)
        except ExternalCapabilityUnavailable:
            raise
        except Exception as e:
            logger.error(f"{self.provider} request failed: {str(e)}")
            raise ExternalCapabilityUnavailable(f"AI provider {self.provider} is unavailable") from e

        if not text:
            raise ExternalCapabilityUnavailable(f"Empty response from {self.provider}")

        try:
            return json.loads(strip_json_fence(text))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse {self.provider} JSON: {str(e)}")
            logger.error(f"Response text: {text[:500]}")
            raise ExternalCapabilityUnavailable("AI response was not valid JSON") from e

    async def grade(
        self,
        question_text: str,
        student_answer: str,
        model_answer: Optional[str] = None,
    ) -> AIGradeResult:
        """
        Suggest a grade for one open-ended answer

        Returns:
            AIGradeResult with a 0-100 score_percentage

        Raises:
            ExternalCapabilityUnavailable: provider down, misconfigured or unparseable
        """
        payload = await self._complete_json(
            GRADING_SYSTEM_PROMPT,
            build_grading_prompt(question_text, student_answer, model_answer),
            self.grading_temperature,
        )
        if not isinstance(payload, dict):
            raise ExternalCapabilityUnavailable("AI grading response was not an object")

        try:
            # Clamp score between 0 and 100
            score = max(0.0, min(100.0, float(payload.get("score_percentage", 0.0))))
            return AIGradeResult(
                score_percentage=score,
                feedback=payload.get("feedback") or "No feedback provided",
                strengths=payload.get("strengths") or [],
                improvements=payload.get("improvements") or [],
            )
        except (TypeError, ValueError, ValidationError) as e:
            raise ExternalCapabilityUnavailable("AI grading response had an invalid shape") from e

    async def generate_questions(self, request: GenerateQuestionsRequest) -> List[GeneratedQuestion]:
        """
        Draft questions on a topic; entries that do not parse are skipped

        Raises:
            ExternalCapabilityUnavailable: provider down or nothing usable returned
        """
        payload = await self._complete_json(
            GENERATION_SYSTEM_PROMPT,
            build_generation_prompt(request),
            self.generation_temperature,
        )
        items = payload.get("questions") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise ExternalCapabilityUnavailable("AI generation response had no question list")

        questions: List[GeneratedQuestion] = []
        for index, item in enumerate(items):
            try:
                questions.append(GeneratedQuestion.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping unparseable generated question {index}: {e.error_count()} errors")

        if len(questions) != request.count:
            logger.warning(f"Expected {request.count} questions, got {len(questions)}")
        return questions


class UnavailableGrader(AIGrader):
    """Stand-in when no provider is configured; every call degrades to manual grading"""

    def __init__(self, provider: str = "none"):
        super().__init__()
        self.provider = provider

    @property
    def configured(self) -> bool:
        return False

    def _complete(self, system_prompt: str, prompt: str, temperature: float) -> str:
        raise ExternalCapabilityUnavailable("AI service is not configured")


def build_ai_grader(config: Settings = default_settings) -> AIGrader:
    """Pick the adapter named by AI_PROVIDER, or UnavailableGrader when it lacks a key"""
    provider = (config.AI_PROVIDER or "none").lower()

    if provider == "gemini" and config.GEMINI_API_KEY:
        from assessment_engine.services.gemini_service import GeminiGrader
        return GeminiGrader(
            api_key=config.GEMINI_API_KEY,
            model=config.GEMINI_MODEL,
            grading_temperature=config.AI_GRADING_TEMPERATURE,
            generation_temperature=config.AI_GENERATION_TEMPERATURE,
        )

    if provider == "openai" and config.OPENAI_API_KEY:
        from assessment_engine.services.openai_service import OpenAIGrader
        return OpenAIGrader(
            api_key=config.OPENAI_API_KEY,
            model=config.OPENAI_MODEL,
            grading_temperature=config.AI_GRADING_TEMPERATURE,
            generation_temperature=config.AI_GENERATION_TEMPERATURE,
        )

    if provider not in ("gemini", "openai", "none"):
        logger.warning(f"Unsupported AI provider: {provider}")
    else:
        logger.info(f"AI provider '{provider}' has no API key; AI grading disabled")
    return UnavailableGrader(provider)
