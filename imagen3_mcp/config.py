"""Startup configuration for the Imagen 3 MCP server.

Settings are read once, before the server starts serving, and then passed
around as frozen values. A missing credential is a startup error, never a
per-call one.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

# Environment variable holding the Google AI (Gemini) API key
API_KEY_ENV = "GEMINI_API_KEY"

# Optional keyring fallback for users who keep the key in the OS keychain.
_DEFAULT_KEYRING_SERVICE = "imagen3-mcp"
_DEFAULT_KEYRING_ACCOUNT = API_KEY_ENV

# Look for .env in the project root (parent directory of this file's parent)
DOTENV_CANDIDATES = [
    Path(__file__).resolve().parents[1] / ".env",
    Path(__file__).resolve().parents[1] / ".env.local",
]

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL_ID = "imagen-3.0-generate-002"
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_LOG_LEVEL = "WARNING"


class ConfigurationError(ValueError):
    """Raised when the server cannot start with the current environment."""


@dataclass(frozen=True)
class Credentials:
    """Secret used to authorize upstream calls."""
    api_key: str

    def __repr__(self) -> str:
        return "Credentials(api_key='***')"


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, immutable after startup."""
    credentials: Credentials
    base_url: str = DEFAULT_BASE_URL
    model_id: str = DEFAULT_MODEL_ID
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    output_dir: Optional[Path] = None
    log_level: str = DEFAULT_LOG_LEVEL


def _prime_dotenv_env() -> None:
    """Load environment variables from .env files for local development."""
    for env_file in DOTENV_CANDIDATES:
        try:
            if not env_file.exists():
                continue
            for raw_line in env_file.read_text().splitlines():
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                name, val = line.split("=", 1)
                name = name.strip()
                if not name or name in os.environ:
                    continue
                cleaned = val.strip().strip('"').strip("'")
                if cleaned:
                    os.environ[name] = cleaned
        except OSError:
            continue


def _keyring_api_key(environ: Mapping[str, str]) -> Optional[str]:
    """Best-effort lookup in the OS keychain (optional dependency)."""
    service = environ.get("IMAGEN_MCP_KEYRING_SERVICE") or _DEFAULT_KEYRING_SERVICE
    account = environ.get("IMAGEN_MCP_KEYRING_ACCOUNT") or _DEFAULT_KEYRING_ACCOUNT
    try:
        import keyring  # type: ignore  # pylint: disable=import-outside-toplevel
        from keyring.errors import KeyringError  # type: ignore  # pylint: disable=import-outside-toplevel
    except ImportError:
        return None

    try:
        stored = keyring.get_password(service, account)
    except KeyringError:
        return None

    if stored and stored.strip():
        return stored.strip()
    return None


def get_api_key(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Get the API key from the environment or keyring. Returns None if not set."""
    env = os.environ if environ is None else environ
    key = (env.get(API_KEY_ENV) or "").strip()
    if key:
        return key
    return _keyring_api_key(env)


def require_credentials(environ: Optional[Mapping[str, str]] = None) -> Credentials:
    """Get the credentials or raise a ConfigurationError."""
    key = get_api_key(environ)
    if not key:
        raise ConfigurationError(
            f"{API_KEY_ENV} environment variable is not set. Image generation cannot start."
        )
    return Credentials(api_key=key)


def _parse_timeout(raw: Optional[str]) -> float:
    if raw is None or not raw.strip():
        return DEFAULT_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"IMAGEN_TIMEOUT_SECONDS must be a number, got {raw!r}.") from exc
    if value <= 0:
        raise ConfigurationError(f"IMAGEN_TIMEOUT_SECONDS must be positive, got {raw!r}.")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build the process settings.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ`` after priming
            it from ``.env``/``.env.local``.

    Returns:
        Frozen Settings with the credential resolved.

    Raises:
        ConfigurationError: If the API key is missing or a value is invalid.
    """
    if environ is None:
        _prime_dotenv_env()
        environ = os.environ

    output_dir = (environ.get("IMAGEN_OUTPUT_DIR") or "").strip()
    return Settings(
        credentials=require_credentials(environ),
        base_url=(environ.get("BASE_URL") or DEFAULT_BASE_URL).strip().rstrip("/"),
        model_id=(environ.get("IMAGEN_MODEL_ID") or DEFAULT_MODEL_ID).strip(),
        timeout=_parse_timeout(environ.get("IMAGEN_TIMEOUT_SECONDS")),
        output_dir=Path(output_dir).expanduser() if output_dir else None,
        log_level=(environ.get("IMAGEN_LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper(),
    )
