"""
Application configuration.

All settings come from environment variables (Vercel-style names are kept so
the same .env works for the dashboard and this service).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass
class Settings:
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    sendgrid_api_key: Optional[str] = None
    from_email: str = "noreply@armonyco.com"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    environment: str = "production"
    log_level: str = "INFO"
    cors_allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    cache_default_ttl_seconds: float = 5.0
    cache_sweep_interval_seconds: float = 30.0

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ALLOWED_ORIGINS", "*")
        return cls(
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY") or None,
            from_email=os.getenv("FROM_EMAIL") or "noreply@armonyco.com",
            supabase_url=os.getenv("VITE_SUPABASE_URL") or os.getenv("SUPABASE_URL"),
            supabase_service_key=(
                os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_SERVICE_KEY")
            ),
            supabase_anon_key=os.getenv("VITE_SUPABASE_ANON_KEY"),
            environment=os.getenv("NODE_ENV", "production"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_allowed_origins=[o.strip() for o in origins.split(",") if o.strip()],
            cache_default_ttl_seconds=_env_float("CACHE_DEFAULT_TTL_SECONDS", 5.0),
            cache_sweep_interval_seconds=_env_float("CACHE_SWEEP_INTERVAL_SECONDS", 30.0),
        )


def stripe_price_for_plan(plan_id: Optional[str]) -> Optional[str]:
    """Look up STRIPE_PRICE_<PLAN> for a plan id (e.g. 'pro' -> STRIPE_PRICE_PRO)."""
    if not plan_id:
        return None
    return os.getenv(f"STRIPE_PRICE_{str(plan_id).upper()}") or None


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
