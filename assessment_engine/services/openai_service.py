"""
OpenAI adapter for essay grading and question generation
"""
import logging

from openai import OpenAI

from assessment_engine.services.ai_grader import AIGrader

logger = logging.getLogger(__name__)


class OpenAIGrader(AIGrader):
    """AIGrader backed by the openai chat completions API in JSON mode"""

    provider = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4-turbo-preview", **kwargs):
        super().__init__(**kwargs)
        self.client = OpenAI(api_key=api_key)
        self.model = model
        logger.info(f"OpenAI grader ready ({model})")

    def _complete(self, system_prompt: str, prompt: str, temperature: float) -> str:
        res = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        return res.choices[0].message.content or ""
