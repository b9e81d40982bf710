from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Primary completion provider (Generative Language API)
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	gemini_base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta/models", validation_alias="GEMINI_BASE_URL")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="microsoft/wizardlm-2-8x22b", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="AI Tutor", validation_alias="OPENROUTER_TITLE")

	# Reply budget for every tutoring turn
	completion_max_tokens: int = Field(default=1000, validation_alias="COMPLETION_MAX_TOKENS")
	completion_temperature: float = Field(default=0.7, validation_alias="COMPLETION_TEMPERATURE")
	completion_timeout_seconds: float = Field(default=30.0, validation_alias="COMPLETION_TIMEOUT_SECONDS")

	# Speech synthesis profile handed to the playback device
	speech_rate: float = Field(default=0.9, validation_alias="SPEECH_RATE")
	speech_pitch: float = Field(default=1.0, validation_alias="SPEECH_PITCH")
	speech_volume: float = Field(default=1.0, validation_alias="SPEECH_VOLUME")

	# Per-user in-memory chat runtimes
	chat_runtime_idle_minutes: int = Field(default=60, validation_alias="CHAT_RUNTIME_IDLE_MINUTES")
	chat_runtime_max: int = Field(default=500, validation_alias="CHAT_RUNTIME_MAX")

	default_language: str = Field(default="en", validation_alias="DEFAULT_LANGUAGE")
	supported_languages: List[str] = ["en", "es", "fr", "ar", "zh", "sw"]

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
