"""Secret generation, strength checks, and log redaction.

Secrets come from the operating system CSPRNG via :mod:`secrets` and are
never cached or logged.  :func:`sanitize_sensitive_data` is applied to every
piece of text the execution layer reports or attaches to an exception.
"""

from __future__ import annotations

import base64
import math
import re
import secrets
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from build_app_with.errors import SecretGenerationError
from build_app_with.security.paths import safe_path_join
from build_app_with.templates import TemplateRenderer

SecretEncoding = Literal["base64url", "hex"]

REDACTED = "***REDACTED***"

_WEAK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(.)\1+$", re.DOTALL),
    re.compile(r"^(password|secret|key|123|abc)", re.IGNORECASE),
    re.compile(r"^[0-9]+$"),
    re.compile(r"^[a-z]+$", re.IGNORECASE),
)

# Applied in order; each entry is (pattern, replacement).
_SENSITIVE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(
            r"(password|pwd|secret|key|token|auth)[=:]\s*['\"]?(?:Bearer\s+)?([^'\"\s,}]+)",
            re.IGNORECASE,
        ),
        rf"\1={REDACTED}",
    ),
    # The password extends to the last "@" before the host.
    (
        re.compile(
            r"(mongodb(?:\+srv)?|postgresql|mysql)://[^:/\s]+:(\S+)@(?=[^@\s]*(?:\s|$))",
            re.IGNORECASE,
        ),
        rf"\1://***:{REDACTED}@",
    ),
    (
        re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
        f"Bearer {REDACTED}",
    ),
)

_ENV_KEY = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def generate_secure_secret(length: int = 64, encoding: SecretEncoding = "base64url") -> str:
    """Generate a cryptographically secure random string.

    Draws ``ceil(length * 3 / 4)`` random bytes, encodes them and truncates the
    result to exactly *length* characters.

    Args:
        length: Number of characters in the result.
        encoding: ``"base64url"`` (unpadded) or ``"hex"``.

    Raises:
        SecretGenerationError: On an unsupported encoding, a non-positive
            length, or when the randomness source is unavailable.
    """
    if encoding not in ("base64url", "hex"):
        raise SecretGenerationError(f"Unsupported encoding: {encoding}")
    if not isinstance(length, int) or isinstance(length, bool) or length < 1:
        raise SecretGenerationError(f"Secret length must be a positive integer, got {length!r}")

    try:
        buffer = secrets.token_bytes(math.ceil(length * 3 / 4))
    except (OSError, NotImplementedError) as exc:
        raise SecretGenerationError() from exc

    if encoding == "hex":
        encoded = buffer.hex()
    else:
        encoded = base64.urlsafe_b64encode(buffer).rstrip(b"=").decode("ascii")
    return encoded[:length]


def generate_jwt_secret() -> str:
    """64-character base64url JWT signing secret."""
    return generate_secure_secret(64, "base64url")


def generate_database_password() -> str:
    """32-character base64url database password."""
    return generate_secure_secret(32, "base64url")


def generate_api_key() -> str:
    """48-character base64url API key."""
    return generate_secure_secret(48, "base64url")


def validate_secret_strength(secret: Any, min_length: int = 32) -> bool:
    """Return ``True`` unless *secret* is obviously weak.

    This is a denylist of bad values (too short, one repeated character,
    digits only, letters only, or a ``password``/``secret``/``key``/``123``/
    ``abc`` prefix), not a proof of strength.
    """
    if not secret or not isinstance(secret, str):
        return False
    if len(secret) < min_length:
        return False
    return not any(pattern.search(secret) for pattern in _WEAK_PATTERNS)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def sanitize_sensitive_data(text: Any) -> Any:
    """Redact credentials from *text* before it is logged or raised.

    Handles ``password=...``-style assignments (the key is kept), credentialed
    ``mongodb``/``postgresql``/``mysql`` URIs and ``Bearer`` tokens.  Text that
    matches none of the patterns is returned unchanged; non-string input is
    returned as-is.
    """
    if not text or not isinstance(text, str):
        return text

    sanitized = text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


# ---------------------------------------------------------------------------
# .env templates
# ---------------------------------------------------------------------------


class DatabaseEnvConfig(BaseModel):
    host: str = "localhost"
    port: int = 5432
    name: str = "myapp"
    user: str = "dbuser"

    @field_validator("host", "name", "user")
    @classmethod
    def _single_line(cls, value: str) -> str:
        return _ensure_single_line(value)


class JwtEnvConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expires_in: str = Field(default="7d", alias="expiresIn")

    @field_validator("expires_in")
    @classmethod
    def _single_line(cls, value: str) -> str:
        return _ensure_single_line(value)


class EnvTemplateConfig(BaseModel):
    """Which sections a generated ``.env`` file contains."""

    model_config = ConfigDict(populate_by_name=True)

    node_env: str = Field(default="development", alias="nodeEnv")
    port: int = 3000
    database: DatabaseEnvConfig | None = None
    jwt: JwtEnvConfig | None = None
    additional_vars: dict[str, str] = Field(default_factory=dict, alias="additionalVars")

    @field_validator("node_env")
    @classmethod
    def _single_line(cls, value: str) -> str:
        return _ensure_single_line(value)

    @field_validator("additional_vars")
    @classmethod
    def _valid_vars(cls, value: dict[str, str]) -> dict[str, str]:
        for key, item in value.items():
            if not _ENV_KEY.fullmatch(key):
                raise ValueError(f"Invalid environment variable name: {key!r}")
            _ensure_single_line(str(item))
        return value


def _ensure_single_line(value: str) -> str:
    if "\n" in value or "\r" in value:
        raise ValueError("Environment values must be single-line")
    return value


def generate_secure_env_template(
    config: EnvTemplateConfig | dict[str, Any] | None = None,
    renderer: TemplateRenderer | None = None,
) -> str:
    """Render a ``.env`` body with freshly generated secrets.

    The database password and JWT secret are generated per call; the template
    never contains a static value for either.
    """
    if config is None:
        config = EnvTemplateConfig()
    elif isinstance(config, dict):
        config = EnvTemplateConfig.model_validate(config)

    renderer = renderer or TemplateRenderer()
    context: dict[str, Any] = {
        "node_env": config.node_env,
        "port": config.port,
        "database": config.database,
        "jwt": config.jwt,
        "additional_vars": config.additional_vars,
        "database_password": generate_database_password() if config.database else "",
        "jwt_secret": generate_jwt_secret() if config.jwt else "",
    }
    return renderer.render("env.j2", context)


async def write_env_file(
    directory: str | Path,
    config: EnvTemplateConfig | dict[str, Any] | None = None,
    filename: str = ".env",
    renderer: TemplateRenderer | None = None,
) -> Path:
    """Render the ``.env`` template and write it inside *directory*.

    *filename* is joined with :func:`safe_path_join`, so it cannot point
    outside *directory*.
    """
    renderer = renderer or TemplateRenderer()
    target = safe_path_join(str(Path(directory).resolve()), filename)
    content = generate_secure_env_template(config, renderer)
    return await renderer.write(target, content)
