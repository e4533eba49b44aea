# jojo/config.py
import logging
import secrets
from typing import Annotated, List, Literal, Optional

from pydantic import Field, ValidationError as PydanticValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import ConfigError

logger = logging.getLogger(__name__)

PROVIDER_KEY_NAMES = ("GEMINI_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY")

DEFAULT_SYSTEM_PROMPT = (
    "You are Jojo, a tech assistant. ONLY answer tech questions: coding, web dev, "
    "software, hardware, networking, AI/ML, cybersecurity.\n"
    "For non-tech questions say: \"I'm Jojo, your tech assistant! Ask me about coding, "
    "software, or hardware!\"\n"
    "Be brief and direct."
)
DEFAULT_MODELS = ["gemini-2.0-flash-lite", "gemini-2.0-flash", "gemini-flash-latest"]

CommaList = Annotated[List[str], NoDecode]


class Settings(BaseSettings):
    """Process configuration, read from the environment and `.env`.

    Invalid values raise `ConfigError` at construction time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    app_name: str = "Jojo"
    environment: str = Field(default="production", validation_alias="APP_ENV")

    # Provider
    gemini_api_key: Optional[str] = Field(default=None, validation_alias="GEMINI_API_KEY")
    google_generative_ai_api_key: Optional[str] = Field(default=None, validation_alias="GOOGLE_GENERATIVE_AI_API_KEY")
    provider_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    chat_models: CommaList = Field(default_factory=lambda: list(DEFAULT_MODELS))
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_output_tokens: int = Field(default=1024, ge=1)
    temperature: float = 0.7
    context_window: int = Field(default=20, ge=1)
    chat_streaming: bool = False
    fallback_on_any_error: bool = False

    # Auth
    auth_mode: Literal["password", "totp"] = "password"
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(default=24 * 60, ge=60, le=24 * 60)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # Storage
    storage: Literal["file", "memory"] = "file"
    database_url: str = "sqlite:///./chatbot.db"
    vercel: Optional[str] = None
    aws_lambda_function_version: Optional[str] = None

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: CommaList = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    def __init__(self, **values):
        try:
            super().__init__(**values)
        except PydanticValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in exc.errors()
            )
            raise ConfigError(f"Invalid configuration: {problems}") from exc

    @field_validator("chat_models", "cors_origins", mode="before")
    @classmethod
    def split_commas(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("chat_models")
    @classmethod
    def require_a_model(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("CHAT_MODELS must name at least one model")
        return value

    @field_validator("environment", "auth_mode", "storage", mode="before")
    @classmethod
    def lowercase(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def apply_deployment_rules(self) -> "Settings":
        # serverless filesystems are read-only or ephemeral
        if self.vercel or self.aws_lambda_function_version:
            self.storage = "memory"

        if not self.jwt_secret:
            if not self.is_development:
                raise ValueError("JWT_SECRET must be set outside development mode")
            # tokens issued with this secret do not survive a restart
            self.jwt_secret = secrets.token_urlsafe(48)
            logger.warning("JWT_SECRET is not set; using a random per-process secret (development mode)")
        return self

    @property
    def provider_api_key(self) -> Optional[str]:
        return self.gemini_api_key or self.google_generative_ai_api_key

    @property
    def provider_key_name(self) -> Optional[str]:
        if self.gemini_api_key:
            return "GEMINI_API_KEY"
        if self.google_generative_ai_api_key:
            return "GOOGLE_GENERATIVE_AI_API_KEY"
        return None

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def in_memory(self) -> bool:
        return self.storage == "memory"

    @property
    def totp_enabled(self) -> bool:
        return self.auth_mode == "totp"
