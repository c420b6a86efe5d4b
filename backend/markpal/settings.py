from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Low temperature keeps repeated markings of the same answer close together
	gemini_temperature: float = Field(default=0.1, validation_alias="GEMINI_TEMPERATURE")
	gemini_timeout_seconds: float = Field(default=30.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="MarkPal", validation_alias="OPENROUTER_TITLE")

	# Marking: "rules" (deterministic phrase matching) or "gemini" (LLM judge)
	marking_backend: str = Field(default="rules", validation_alias="MARKING_BACKEND")
	marking_max_attempts: int = Field(default=2, validation_alias="MARKING_MAX_ATTEMPTS")
	max_answer_chars: int = Field(default=8000, validation_alias="MAX_ANSWER_CHARS")

	# Tiers allowed to use the paper / mark-scheme extraction endpoints
	# Comma separated, e.g. "pro,pro+"
	extraction_tiers: str = Field(default="pro+", validation_alias="EXTRACTION_TIERS")
	extraction_written_only: bool = Field(default=True, validation_alias="EXTRACTION_WRITTEN_ONLY")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	seed_username: str | None = Field(default=None, validation_alias="SEED_USERNAME")
	seed_password_plain: str | None = Field(default=None, validation_alias="SEED_PASSWORD")

	# Shared secrets for the billing collaborator and the monthly cron job
	webhook_secret: str | None = Field(default=None, validation_alias="WEBHOOK_SECRET")
	cron_secret: str | None = Field(default=None, validation_alias="CRON_SECRET")

	# Periodic quota reset / session purge (0 disables the background loop)
	maintenance_interval_seconds: int = Field(default=24 * 60 * 60, validation_alias="MAINTENANCE_INTERVAL_SECONDS")

	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def extraction_tier_list(self) -> list[str]:
		return [t.strip().lower() for t in self.extraction_tiers.split(",") if t.strip()]

settings = Settings()
