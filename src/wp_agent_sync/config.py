# config.py
# Environment-driven settings. Values come from the process environment,
# optionally seeded from a local .env file.
#
# Credentials are read lazily (on first connection to an environment) so a
# process can start without every environment configured.

import os
from collections.abc import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from wp_agent_sync.errors import ConfigurationError

load_dotenv()


SANDBOX = "sandbox"
PRODUCTION = "production"
REAL_SITE = "real-site"

# Hard ceiling on model steps per agent run. Not configurable per call.
MAX_AGENT_STEPS = 10

DEFAULT_MCP_TIMEOUT = 30.0

_ENV_PREFIXES = {
    SANDBOX: "WORDPRESS_MCP",
    PRODUCTION: "WORDPRESS_PRODUCTION_MCP",
    REAL_SITE: "WORDPRESS_REAL_SITE_MCP",
}

DEFAULT_MODELS = {
    "anthropic": "claude-3-5-sonnet-20241022",
    "openai": "gpt-4-turbo",
}

_PROVIDER_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


# ---------------------------------------------------------------------------
# MCP environments
# ---------------------------------------------------------------------------


class EnvironmentCredentials(BaseModel):
    """Endpoint and HTTP Basic credentials for one WordPress MCP environment."""

    environment: str
    url: str
    username: str
    password: str = Field(..., repr=False)
    timeout: float = DEFAULT_MCP_TIMEOUT


def env_prefix(environment: str) -> str:
    """Variable prefix for an environment, e.g. 'staging-2' -> WORDPRESS_STAGING_2_MCP."""
    if environment in _ENV_PREFIXES:
        return _ENV_PREFIXES[environment]
    return f"WORDPRESS_{environment.upper().replace('-', '_')}_MCP"


def environment_label(environment: str) -> str:
    if environment == REAL_SITE:
        return "real site"
    return environment.replace("-", " ")


def load_credentials(
    environment: str, environ: Mapping[str, str] | None = None
) -> EnvironmentCredentials:
    """
    Read URL / username / password for an environment.

    Raises ConfigurationError naming the environment and every missing variable.
    """
    environ = os.environ if environ is None else environ
    prefix = env_prefix(environment)
    fields = {name: environ.get(f"{prefix}_{name.upper()}", "").strip()
              for name in ("url", "username", "password")}

    missing = [f"{prefix}_{name.upper()}" for name, value in fields.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing {environment} WordPress MCP credentials: {', '.join(missing)}. "
            f"Set {prefix}_URL, {prefix}_USERNAME and {prefix}_PASSWORD in .env"
        )

    raw_timeout = environ.get("MCP_TIMEOUT", "").strip()
    try:
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_MCP_TIMEOUT
    except ValueError as exc:
        raise ConfigurationError(
            f"MCP_TIMEOUT must be a number of seconds, got {raw_timeout!r}"
        ) from exc
    if timeout <= 0:
        raise ConfigurationError(f"MCP_TIMEOUT must be positive, got {raw_timeout!r}")

    return EnvironmentCredentials(environment=environment, timeout=timeout, **fields)


# ---------------------------------------------------------------------------
# Language model
# ---------------------------------------------------------------------------


class AgentSettings(BaseModel):
    """Provider and model identity. Fixed per process, never per request."""

    provider: str
    model: str
    api_key: str = Field(..., repr=False)
    base_url: str | None = None


def load_agent_settings(environ: Mapping[str, str] | None = None) -> AgentSettings:
    environ = os.environ if environ is None else environ
    provider = environ.get("AI_PROVIDER", "anthropic").strip().lower() or "anthropic"

    if provider not in _PROVIDER_KEYS:
        raise ConfigurationError(
            f"Unsupported AI_PROVIDER: {provider}. Must be 'openai' or 'anthropic'"
        )

    key_name = _PROVIDER_KEYS[provider]
    api_key = environ.get(key_name, "").strip()
    if not api_key:
        raise ConfigurationError(f"{key_name} is required when AI_PROVIDER={provider}")

    base_url = None
    if provider == "openai":
        base_url = environ.get("OPENAI_BASE_URL", "").strip() or None

    return AgentSettings(
        provider=provider,
        model=environ.get("AGENT_MODEL", "").strip() or DEFAULT_MODELS[provider],
        api_key=api_key,
        base_url=base_url,
    )
