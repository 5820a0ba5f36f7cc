"""Server configuration loading and validation.

Reads the process environment once at startup and returns a validated
ServerConfig dataclass. Credentials are resolved into exactly one of two
modes (password or token); when the selected mode is incomplete the server
still starts, with ``credential_mode`` set to ``none``.
"""

from __future__ import annotations

import enum
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from dav_mcp import __version__

logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "dav-mcp-stdio"
DEFAULT_GOOGLE_SERVER_URL = "https://apidata.googleusercontent.com/caldav/v2/"
DEFAULT_GOOGLE_TOKEN_URL = "https://accounts.google.com/o/oauth2/token"
DEFAULT_TOOL_CALL_LOG_FILE = "logs/tool-calls.jsonl"
DEFAULT_HEALTH_INTERVAL_S = 300.0
DEFAULT_SHUTDOWN_GRACE_S = 5.0
DEFAULT_REQUEST_TIMEOUT_S = 30.0

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_LOG_FORMATS = {"text", "json"}
_TOOL_CALL_LOG_MODES = {"console", "file", "both"}

PASSWORD_ENV_VARS = ("CALDAV_SERVER_URL", "CALDAV_USERNAME", "CALDAV_PASSWORD")
TOKEN_ENV_VARS = ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REFRESH_TOKEN")


class ConfigError(Exception):
    """Raised when server configuration is malformed or invalid."""


class CredentialMode(enum.StrEnum):
    """Authentication scheme selected at startup."""

    PASSWORD = "password"
    TOKEN = "token"
    NONE = "none"
    DISABLED = "disabled"


@dataclass(frozen=True)
class PasswordCredentials:
    """HTTP Basic credentials for a standard CalDAV/CardDAV server."""

    server_url: str
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class TokenCredentials:
    """OAuth2 refresh-token credentials (e.g. Google CalDAV)."""

    server_url: str
    username: str | None
    client_id: str
    client_secret: str = field(repr=False)
    refresh_token: str = field(repr=False)
    token_url: str = DEFAULT_GOOGLE_TOKEN_URL


RemoteCredentials = PasswordCredentials | TokenCredentials


@dataclass
class LoggingConfig:
    """Logging configuration (LOG_LEVEL / LOG_FORMAT / LOG_ROOT)."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ToolCallLogConfig:
    """Tool-call lifecycle logging configuration."""

    enabled: bool = True
    mode: str = "console"  # "console", "file" or "both"
    log_file: str = DEFAULT_TOOL_CALL_LOG_FILE


@dataclass
class ServerConfig:
    """Parsed and validated server configuration."""

    name: str = DEFAULT_SERVER_NAME
    version: str = __version__
    credential_mode: CredentialMode = CredentialMode.NONE
    credentials: RemoteCredentials | None = None
    missing_credentials: list[str] = field(default_factory=list)
    development: bool = False
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tool_call_log: ToolCallLogConfig = field(default_factory=ToolCallLogConfig)
    health_interval_s: float = DEFAULT_HEALTH_INTERVAL_S
    shutdown_grace_s: float = DEFAULT_SHUTDOWN_GRACE_S
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S


def _get(env: Mapping[str, str], key: str) -> str | None:
    value = env.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = _get(env, key)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean (true/false), got {raw!r}")


def _parse_seconds(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _get(env, key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number of seconds, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {raw!r}")
    return value


def _parse_choice(env: Mapping[str, str], key: str, default: str, choices: set[str]) -> str:
    raw = _get(env, key)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered not in choices:
        allowed = ", ".join(sorted(choices))
        raise ConfigError(f"{key} must be one of: {allowed}; got {raw!r}")
    return lowered


def _resolve_credential_mode(env: Mapping[str, str]) -> CredentialMode:
    auth_method = _get(env, "AUTH_METHOD") or "Basic"
    if auth_method in ("OAuth", "Oauth", "oauth", "OAUTH"):
        return CredentialMode.TOKEN
    if auth_method.lower() == "dummy":
        return CredentialMode.DISABLED
    if auth_method.lower() != "basic":
        logger.warning("Unknown AUTH_METHOD %r; falling back to Basic authentication", auth_method)
    return CredentialMode.PASSWORD


def resolve_credentials(
    env: Mapping[str, str],
) -> tuple[CredentialMode, RemoteCredentials | None, list[str]]:
    """Resolve the credential mode and credentials from environment values.

    Returns
    -------
    tuple
        ``(mode, credentials, missing)``. When the requested mode is missing
        any variable, mode is ``NONE``, credentials is ``None`` and
        ``missing`` lists the absent variable names.
    """
    requested = _resolve_credential_mode(env)
    if requested is CredentialMode.DISABLED:
        return CredentialMode.DISABLED, None, []

    required = TOKEN_ENV_VARS if requested is CredentialMode.TOKEN else PASSWORD_ENV_VARS
    missing = [var for var in required if _get(env, var) is None]
    if missing:
        return CredentialMode.NONE, None, missing

    if requested is CredentialMode.TOKEN:
        credentials: RemoteCredentials = TokenCredentials(
            server_url=_get(env, "GOOGLE_SERVER_URL") or DEFAULT_GOOGLE_SERVER_URL,
            username=_get(env, "GOOGLE_USER"),
            client_id=env["GOOGLE_CLIENT_ID"].strip(),
            client_secret=env["GOOGLE_CLIENT_SECRET"].strip(),
            refresh_token=env["GOOGLE_REFRESH_TOKEN"].strip(),
            token_url=_get(env, "GOOGLE_TOKEN_URL") or DEFAULT_GOOGLE_TOKEN_URL,
        )
    else:
        credentials = PasswordCredentials(
            server_url=env["CALDAV_SERVER_URL"].strip(),
            username=env["CALDAV_USERNAME"].strip(),
            password=env["CALDAV_PASSWORD"].strip(),
        )
    return requested, credentials, []


def load_config(env: Mapping[str, str] | None = None) -> ServerConfig:
    """Build a ServerConfig from environment variables.

    Parameters
    ----------
    env:
        Mapping to read from; defaults to ``os.environ``.

    Raises
    ------
    ConfigError
        If a variable is present but malformed.
    """
    if env is None:
        env = os.environ

    mode, credentials, missing = resolve_credentials(env)
    environment = (_get(env, "DAV_MCP_ENV") or _get(env, "NODE_ENV") or "").lower()

    return ServerConfig(
        name=_get(env, "MCP_SERVER_NAME") or DEFAULT_SERVER_NAME,
        version=_get(env, "MCP_SERVER_VERSION") or __version__,
        credential_mode=mode,
        credentials=credentials,
        missing_credentials=missing,
        development=environment == "development",
        logging=LoggingConfig(
            level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
            format=_parse_choice(env, "LOG_FORMAT", "text", _LOG_FORMATS),
            log_root=_get(env, "LOG_ROOT"),
        ),
        tool_call_log=ToolCallLogConfig(
            enabled=_parse_bool(env, "TOOL_CALL_LOGGING", True),
            mode=_parse_choice(env, "TOOL_CALL_LOG_MODE", "console", _TOOL_CALL_LOG_MODES),
            log_file=_get(env, "TOOL_CALL_LOG_FILE") or DEFAULT_TOOL_CALL_LOG_FILE,
        ),
        health_interval_s=_parse_seconds(env, "HEALTH_CHECK_INTERVAL_S", DEFAULT_HEALTH_INTERVAL_S),
        shutdown_grace_s=_parse_seconds(env, "SHUTDOWN_GRACE_S", DEFAULT_SHUTDOWN_GRACE_S),
        request_timeout_s=_parse_seconds(env, "DAV_REQUEST_TIMEOUT_S", DEFAULT_REQUEST_TIMEOUT_S),
    )
