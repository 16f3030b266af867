from typing import Annotated, List

from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import Field, field_validator

class Settings(BaseSettings):
	# Database
	database_url: str = Field(default="sqlite:///./tracker.db", validation_alias="DATABASE_URL")

	# Evidence and photo uploads
	upload_dir: str = Field(default="uploads", validation_alias="UPLOAD_DIR")
	max_upload_mb: int = Field(default=10, validation_alias="MAX_UPLOAD_MB")
	# Unreferenced uploads younger than this are left alone by the cleanup sweep
	orphan_grace_minutes: int = Field(default=60, validation_alias="ORPHAN_GRACE_MINUTES")
	# Set to 0 to disable the periodic sweep (the startup sweep still runs)
	cleanup_interval_hours: int = Field(default=24, validation_alias="CLEANUP_INTERVAL_HOURS")

	# Document parsing via Gemini
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	gemini_max_retries: int = Field(default=2, validation_alias="GEMINI_MAX_RETRIES")
	gemini_retry_backoff_seconds: float = Field(default=1.0, validation_alias="GEMINI_RETRY_BACKOFF_SECONDS")

	# HTTP
	cors_origins: Annotated[List[str], NoDecode] = Field(default=["http://localhost:3000"], validation_alias="CORS_ORIGINS")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@field_validator("cors_origins", mode="before")
	@classmethod
	def _split_origins(cls, v):
		if isinstance(v, str):
			return [s.strip() for s in v.split(",") if s.strip()]
		return v

settings = Settings()
