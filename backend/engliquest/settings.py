from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash-lite", validation_alias="GEMINI_MODEL")
	gemini_temperature: float = Field(default=1.0, validation_alias="GEMINI_TEMPERATURE")
	gemini_top_p: float = Field(default=0.95, validation_alias="GEMINI_TOP_P")
	gemini_max_output_tokens: int = Field(default=8192, validation_alias="GEMINI_MAX_OUTPUT_TOKENS")
	# Ask Gemini for schema-constrained JSON instead of relying on the prompt alone
	gemini_structured_output: bool = Field(default=False, validation_alias="GEMINI_STRUCTURED_OUTPUT")
	gemini_timeout_seconds: float = Field(default=120.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="EngliQuest Admin", validation_alias="OPENROUTER_TITLE")

	# Admin auth
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	seed_username: str | None = Field(default=None, validation_alias="SEED_USERNAME")
	seed_password_plain: str | None = Field(default=None, validation_alias="SEED_PASSWORD")

	# Generation pipeline
	generation_max_retries: int = Field(default=3, validation_alias="GENERATION_MAX_RETRIES")
	# Seconds; attempt n waits base * 2**n
	generation_base_delay: float = Field(default=1.0, validation_alias="GENERATION_BASE_DELAY")
	generation_concurrency: int = Field(default=10, validation_alias="GENERATION_CONCURRENCY")
	# Quiz sets per /gemini/batch call, sized to stay under platform time limits
	generation_page_size: int = Field(default=5, validation_alias="GENERATION_PAGE_SIZE")
	questions_per_quiz: int = Field(default=15, validation_alias="QUESTIONS_PER_QUIZ")
	questions_per_batch: int = Field(default=50, validation_alias="QUESTIONS_PER_BATCH")
	max_writes_per_commit: int = Field(default=500, validation_alias="MAX_WRITES_PER_COMMIT")

	# Periodic batch status reconciliation
	reconcile_interval_seconds: int = Field(default=3600, validation_alias="RECONCILE_INTERVAL_SECONDS")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
