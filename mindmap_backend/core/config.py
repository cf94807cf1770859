from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── AI Providers ──────────────────────────────────────────────────────────
    AI_PROVIDER: str = "hybrid"

    @field_validator("AI_PROVIDER")
    @classmethod
    def validate_ai_provider(cls, v: str) -> str:
        allowed = {"hybrid", "groq", "gemini", "grok"}
        if v.lower() not in allowed:
            raise ValueError(f"AI_PROVIDER must be one of {allowed}, got '{v}'")
        return v.lower()

    # Groq (Llama 3 - High Speed)
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.3-70b-versatile"

    # Google (Gemini)
    GOOGLE_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash"

    # xAI (Grok, OpenAI-compatible API)
    GROK_API_KEY: Optional[str] = None
    GROK_MODEL: str = "grok-3-mini"
    GROK_BASE_URL: str = "https://api.x.ai/v1"

    # ── Generation defaults ───────────────────────────────────────────────────
    DEFAULT_MAX_TOKENS: int = 4000
    DEFAULT_TEMPERATURE: float = 0.7
    STREAM_KEEPALIVE_SECONDS: float = 15.0

    # ── Enrichment ────────────────────────────────────────────────────────────
    ENRICHMENT_TIMEOUT_SECONDS: float = 6.5
    ENRICHMENT_CHAR_BUDGET: int = 2400
    ENRICHMENT_USER_AGENT: str = "mindmap-backend/3.0 (reference enrichment)"

    # ── Limits ────────────────────────────────────────────────────────────────
    RATE_LIMIT_MAX_REQUESTS: int = 30
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_CACHE_SIZE: int = 500

    # ── Core ──────────────────────────────────────────────────────────────────
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    PORT: int = 3000
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "https://javierclt.github.io",
        "https://mindmap-frontend-rho.vercel.app",
    ]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def api_key_configured(self) -> bool:
        """True when at least one provider usable in the current mode has a key."""
        keys = {
            "groq": self.GROQ_API_KEY,
            "gemini": self.GOOGLE_API_KEY,
            "grok": self.GROK_API_KEY,
        }
        if self.AI_PROVIDER == "hybrid":
            return any(keys.values())
        return bool(keys[self.AI_PROVIDER])

    @property
    def default_model(self) -> str:
        return {
            "groq": self.GROQ_MODEL,
            "gemini": self.GEMINI_MODEL,
            "grok": self.GROK_MODEL,
        }.get(self.AI_PROVIDER, self.GROQ_MODEL)


settings = Settings()
