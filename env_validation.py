"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Nothing is strictly required: without an API key every coaching call
    # degrades to its fallback payload, and without SUPABASE_URL history stays
    # in memory.
    required_vars: Dict[str, str] = {}

    defaults = {
        "MODEL_ID": os.getenv("MODEL_ID") or "gpt-4o",
        "DEMO_USER_ID": os.getenv("DEMO_USER_ID") or "1",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "OPENAI_API_KEY": "API key for the chat-completion endpoint",
        "SUPABASE_URL": "Remote history store URL",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    url_vars = {"LLM_URL", "SUPABASE_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    demo_user = os.getenv("DEMO_USER_ID", "1")
    if not demo_user.isdigit():
        raise EnvironmentError(f"DEMO_USER_ID must be a positive integer, got: {demo_user}")

    if os.getenv("SUPABASE_URL") and not (
        os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_ANON_KEY")
    ):
        logger.warning("SUPABASE_URL is set without SUPABASE_SERVICE_KEY or SUPABASE_ANON_KEY; remote history disabled")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning(f"Optional environment variable not set: {var} ({description})")

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}
