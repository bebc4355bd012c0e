from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional


def parse_comma_list(v):
    """Parse comma-separated string into list. 'none' means empty."""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if v.strip().lower() == 'none':
            return []
        return [x.strip() for x in v.split(',') if x.strip() and x.strip().lower() != 'none']
    return []


class Settings(BaseSettings):
    # App Settings
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"  # development | production
    API_PORT: int = 3000

    # API Keys (format: key1:userId1,key2:userId2)
    API_KEYS: Optional[str] = None

    # AI Providers
    CLAUDE_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    COLLABORATOR_MODEL: str = "claude-3-5-haiku-latest"
    MEMORY_MODEL: Optional[str] = None  # Falls back to COLLABORATOR_MODEL
    ALLOWED_MODELS: str = "claude-3-5-haiku-latest,claude-3-5-haiku-20241022,claude-3-5-sonnet-latest"

    # Chat / extraction
    MAX_MESSAGE_LENGTH: int = 5000
    EXTRACTION_TIMEOUT_SECONDS: float = 20.0
    EXTRACTION_MAX_TOKENS: int = 300
    CLAIM_CACHE_SIZE: int = 10000  # message ids remembered for duplicate rejection
    COLLABORATOR_TIMEOUT_SECONDS: float = 20.0
    COLLABORATOR_MAX_TOKENS: int = 300

    # Event stream
    SSE_HEARTBEAT_SECONDS: float = 15.0
    SSE_CONNECTION_WARN_THRESHOLD: int = 5
    BROKER_SOFT_LISTENER_CAP: int = 50

    # Voice circuit breaker
    VOICE_ENABLED: bool = True
    VOICE_MAX_CONSECUTIVE_429: int = 3
    VOICE_COOLDOWN_SECONDS: float = 15 * 60

    # Rate limiting (per IP, /api/ paths)
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_MAX_REQUESTS: int = 100
    SPEECH_RATE_MAX_PER_MINUTE: int = 10

    # Database
    DATABASE_URL: Optional[str] = None
    ENABLE_MEMORY_DELETE: bool = False

    # Shutdown
    BACKGROUND_DRAIN_SECONDS: float = 5.0

    # CORS (comma-separated origins; empty = localhost only)
    CORS_ORIGIN: Optional[str] = None

    @field_validator(
        'API_PORT', 'MAX_MESSAGE_LENGTH', 'EXTRACTION_MAX_TOKENS', 'CLAIM_CACHE_SIZE', 'COLLABORATOR_MAX_TOKENS',
        'SSE_CONNECTION_WARN_THRESHOLD', 'BROKER_SOFT_LISTENER_CAP', 'VOICE_MAX_CONSECUTIVE_429',
        'RATE_LIMIT_WINDOW_SECONDS', 'RATE_LIMIT_MAX_REQUESTS', 'SPEECH_RATE_MAX_PER_MINUTE',
        mode='before'
    )
    @classmethod
    def parse_optional_int(cls, v, info):
        if v is None or v == '':
            return cls.model_fields[info.field_name].default
        return int(v)

    @field_validator(
        'EXTRACTION_TIMEOUT_SECONDS', 'COLLABORATOR_TIMEOUT_SECONDS', 'SSE_HEARTBEAT_SECONDS',
        'VOICE_COOLDOWN_SECONDS', 'BACKGROUND_DRAIN_SECONDS',
        mode='before'
    )
    @classmethod
    def parse_optional_float(cls, v, info):
        if v is None or v == '':
            return cls.model_fields[info.field_name].default
        return float(v)

    @property
    def memory_model(self) -> str:
        return self.MEMORY_MODEL or self.COLLABORATOR_MODEL

    @property
    def allowed_models_list(self) -> List[str]:
        return parse_comma_list(self.ALLOWED_MODELS)

    @property
    def cors_origins_list(self) -> List[str]:
        return parse_comma_list(self.CORS_ORIGIN or "")

    @property
    def voice_available(self) -> bool:
        """Voice is on only when enabled and an OpenAI key is present."""
        return self.VOICE_ENABLED and bool(self.OPENAI_API_KEY)

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def memory_delete_enabled(self) -> bool:
        return not self.is_production or self.ENABLE_MEMORY_DELETE

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore unknown env vars


settings = Settings()
