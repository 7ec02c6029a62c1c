from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	# Any OpenAI-compatible chat completions endpoint works here
	openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
	openai_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
	openai_timeout_seconds: float = Field(default=60.0, validation_alias="OPENAI_TIMEOUT_SECONDS")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="openai/gpt-4o-mini", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="IELTS Prep", validation_alias="OPENROUTER_TITLE")

	# Dictionary lookups (API Ninjas compatible) and the language AI lookups translate into
	dictionary_api_key: str | None = Field(default=None, validation_alias="DICTIONARY_API_KEY")
	dictionary_base_url: str = Field(default="https://api.api-ninjas.com/v1/dictionary", validation_alias="DICTIONARY_BASE_URL")
	lookup_language: str = Field(default="Vietnamese", validation_alias="LOOKUP_LANGUAGE")

	# Pending AI feedback older than this is marked failed so pollers stop waiting
	feedback_timeout_minutes: int = Field(default=15, validation_alias="FEEDBACK_TIMEOUT_MINUTES")
	cleanup_interval_seconds: int = Field(default=300, validation_alias="CLEANUP_INTERVAL_SECONDS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
