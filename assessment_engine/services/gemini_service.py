"""
Gemini adapter for essay grading and question generation
"""
import google.generativeai as genai
import logging

from assessment_engine.exceptions import ExternalCapabilityUnavailable
from assessment_engine.services.ai_grader import AIGrader

logger = logging.getLogger(__name__)


class GeminiGrader(AIGrader):
    """AIGrader backed by google-generativeai"""

    provider = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-1.5-flash", **kwargs):
        super().__init__(**kwargs)
        genai.configure(api_key=api_key)
        self.model_name = model
        self.model = genai.GenerativeModel(model)
        logger.info(f"Gemini grader ready ({model})")

    def _complete(self, system_prompt: str, prompt: str, temperature: float) -> str:
        response = self.model.generate_content(
            f"{system_prompt}\n\n{prompt}",
            generation_config={
                "temperature": temperature,
                "response_mime_type": "application/json",
            },
        )
        try:
            return response.text
        except ValueError as e:
            # blocked candidates have no text part
            raise ExternalCapabilityUnavailable("Gemini returned no usable content") from e
