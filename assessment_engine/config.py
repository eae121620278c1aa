"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str = "sqlite:///./assessment.db"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Application
    APP_NAME: str = "Assessment Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_PER_HOUR: int = 1000

    # AI grading capability
    AI_PROVIDER: str = "gemini"  # gemini | openai | none
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-1.5-flash"
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4-turbo-preview"
    AI_GRADING_TEMPERATURE: float = 0.3
    AI_GENERATION_TEMPERATURE: float = 0.8

    # Quiz Settings
    QUIZ_CACHE_TTL: int = 3600  # 1 hour
    MIN_QUIZ_DURATION: int = 5  # minutes
    DEFAULT_QUIZ_DURATION: int = 30
    DEFAULT_PASSING_SCORE: float = 60.0
    MIN_QUESTION_POINTS: float = 0.5
    MAX_GENERATED_QUESTIONS: int = 20
    SHORT_ANSWER_PASS_RATIO: float = 0.5

    # Capability catalog seeded into the permissions table when it is empty
    DEFAULT_CAPABILITIES: List[str] = [
        "quiz.view",
        "quiz.create",
        "quiz.edit",
        "quiz.delete",
        "quiz.publish",
        "quiz.grade",
        "quiz.take",
        "offering.view",
        "offering.create",
        "offering.edit",
        "offering.delete",
        "offering.enroll_students",
        "semester.view",
        "semester.manage",
        "semester.set_current",
        "ai.generate_quiz",
        "notification.view",
    ]

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
