"""
Process-wide configuration for the Splitwise MCP server.

Settings are read once from the environment (after loading a local .env file)
and frozen for the lifetime of the process. The resulting Settings object is
passed explicitly to the Splitwise client and to the transports.

Environment variables:
- SPLITWISE_API_KEY: Splitwise API key (required)
- SPLITWISE_BASE_URL: Splitwise API base URL
- SPLITWISE_TIMEOUT: HTTP timeout in seconds for Splitwise calls
- MCP_AUTH_TOKEN: Bearer token required by the HTTP transport
- HOST / PORT: Bind address for the HTTP transport
- LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ...)
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://secure.splitwise.com/api/v3.0"
DEFAULT_AUTH_TOKEN = "default-token"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when the environment does not describe a runnable server."""


@dataclass(frozen=True)
class Settings:
    """Immutable server configuration."""
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout: Optional[float] = None  # None keeps the httpx default
    auth_token: str = DEFAULT_AUTH_TOKEN
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def uses_default_token(self) -> bool:
        return self.auth_token == DEFAULT_AUTH_TOKEN


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        environ: Mapping to read instead of os.environ (a .env file is only
            loaded when reading the real environment)

    Returns:
        Frozen Settings instance

    Raises:
        ConfigurationError: If the API key is missing or a value is malformed
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    api_key = environ.get("SPLITWISE_API_KEY", "").strip()
    if not api_key:
        raise ConfigurationError("SPLITWISE_API_KEY environment variable not set")

    auth_token = environ.get("MCP_AUTH_TOKEN", "").strip()
    if not auth_token:
        auth_token = DEFAULT_AUTH_TOKEN

    port_value = environ.get("PORT", str(DEFAULT_PORT))
    try:
        port = int(port_value)
    except ValueError:
        raise ConfigurationError(f"Invalid PORT: {port_value!r}")
    if not 0 < port < 65536:
        raise ConfigurationError(f"Invalid PORT: {port_value!r}")

    timeout = None
    timeout_value = environ.get("SPLITWISE_TIMEOUT")
    if timeout_value:
        try:
            timeout = float(timeout_value)
        except ValueError:
            raise ConfigurationError(f"Invalid SPLITWISE_TIMEOUT: {timeout_value!r}")

    log_level = environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"Invalid LOG_LEVEL: {log_level!r}")

    return Settings(
        api_key=api_key,
        base_url=environ.get("SPLITWISE_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        timeout=timeout,
        auth_token=auth_token,
        host=environ.get("HOST", DEFAULT_HOST),
        port=port,
        log_level=log_level,
    )


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Send log records to stderr so stdout stays reserved for the stdio protocol."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    # httpx logs every request at INFO; keep it quiet unless debugging
    if logging.getLogger().level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
