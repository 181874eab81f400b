"""Application Configuration - environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) - single instance per process
    - firebase_private_key always holds real newlines (literal "\\n" escapes normalized)
    - store_credentials() never validates: StoreCredentials.validate() does, before any network call

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support (ADR: developer UX)
    - Secrets default to None, not placeholders: missing_required() must see them as absent
    - cors_allowed_origins kept as the raw comma-separated string, parsed by cors_origins
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from immuno_api.infrastructure.store_client import StoreCredentials

# Startup gate: variables the service refuses to run without
REQUIRED_ENV_VARS = ("PORT", "JWT_SECRET", "GEMINI_API_KEY", "FIREBASE_PROJECT_ID")
DEFAULT_PORT = 4000


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Server
    port: int | None = None
    node_env: str = "production"
    render_external_url: str | None = None

    # Auth
    jwt_secret: str | None = None
    jwt_expires_in: str = "7d"

    # Gemini AI
    gemini_api_key: str | None = None

    # Firebase
    firebase_project_id: str | None = None
    firebase_client_email: str | None = None
    firebase_private_key: str | None = None
    firebase_database_url: str | None = None

    @field_validator("firebase_private_key", mode="before")
    @classmethod
    def normalize_private_key(cls, v: str | None) -> str | None:
        """PEM keys arrive newline-escaped from env files and dashboards."""
        if isinstance(v, str):
            return v.replace("\\n", "\n")
        return v

    # Rate limiting
    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_max: int = 10_000

    # CORS
    cors_allowed_origins: str | None = None

    # Startup retry
    startup_max_retries: int = 3
    startup_retry_delay_ms: int = 5000

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def http_port(self) -> int:
        return self.port or DEFAULT_PORT

    @property
    def cors_origins(self) -> list[str]:
        """Comma-separated origins; "*" when unset."""
        if not self.cors_allowed_origins:
            return ["*"]
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]

    def store_credentials(self) -> StoreCredentials:
        return StoreCredentials(
            project_id=self.firebase_project_id,
            client_email=self.firebase_client_email,
            private_key=self.firebase_private_key,
            database_url=self.firebase_database_url,
        )

    def missing_required(self) -> list[str]:
        """Names of REQUIRED_ENV_VARS with no usable value."""
        return [
            name for name in REQUIRED_ENV_VARS
            if not getattr(self, name.lower(), None)
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
