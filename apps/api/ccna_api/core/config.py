from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    env: str = "development"
    api_v1_prefix: str = "/api/v1"
    allowed_origins: str = "http://localhost:5173,http://127.0.0.1:5173"
    log_level: str = "INFO"

    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_seconds: float = 20.0
    gemini_retry_once: bool = False

    tutor_max_output_tokens: int = 1024
    tutor_temperature: float = 0.4
    tutor_max_context_chars: int = 800
    tutor_max_continuations: int = 3
    tutor_max_output_chars: int = 12000

    tutor_cache_enabled: bool = True
    tutor_cache_ttl_seconds: int = 1800
    redis_url: str | None = None

    rate_limit_per_minute: int = 30

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def cors_origin_regex(self) -> str | None:
        # Vite dev server may be opened from another device on the LAN.
        if self.env.lower() == "development":
            return (
                r"^https?://("
                r"localhost|127\.0\.0\.1|0\.0\.0\.0|\[::1\]|"
                r"10\.\d{1,3}\.\d{1,3}\.\d{1,3}|"
                r"192\.168\.\d{1,3}\.\d{1,3}|"
                r"172\.(1[6-9]|2\d|3[01])\.\d{1,3}\.\d{1,3}"
                r")(:\d+)?$"
            )
        return None


settings = Settings()
