"""Configuration for the hosted data platform connection."""

from pydantic_settings import BaseSettings


class SupabaseSettings(BaseSettings):
    """Remote store client settings.

    The project URL and keys live in the main application settings; this
    class only tunes the HTTP client. Settings can be overridden via
    environment variables.
    """

    SUPABASE_TIMEOUT: float = 15.0
    SUPABASE_RETRY_ATTEMPTS: int = 3
    SUPABASE_RETRY_DELAY: float = 0.5
    SUPABASE_SCHEMA: str = "public"

    model_config = {
        "env_prefix": "",
        "case_sensitive": True,
        "extra": "ignore",
    }


supabase_settings = SupabaseSettings()
