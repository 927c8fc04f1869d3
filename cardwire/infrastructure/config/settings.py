"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (~/.cardwire/config.yaml). The typed ``ClientSettings``
object is built from these sources and is what the rest of the client
consumes.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

try:
    from dotenv import load_dotenv
except ImportError:
    load_dotenv = None
    logging.getLogger(__name__).warning("python-dotenv not installed. .env file support disabled.")

try:
    import yaml
except ImportError:
    yaml = None
    logging.getLogger(__name__).warning("PyYAML not installed. YAML config file support disabled.")

from cardwire.domain.models.common import VALID_ROLES
from cardwire.domain.models.errors import ConfigurationError

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".cardwire"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"

DEFAULT_BASE_URL = "https://wiki.magi-agi.org/api/mcp"
DEFAULT_ROLE = "user"
DEFAULT_ISSUER = "magi-archive"

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Turns nested YAML mappings into dotted keys ('auth.api_key')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values defined on ``ClientSettings``

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if yaml and config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    elif yaml:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    if load_dotenv:
        dotenv_path = env_file or find_dotenv_path()
        if dotenv_path:
            # override=False: real environment variables take precedence
            if load_dotenv(dotenv_path=dotenv_path, override=False):
                logger.info(f"Loaded environment variables from: {dotenv_path}")
        else:
            logger.debug("Skipping .env file loading (no .env at or above current directory).")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.debug("Configuration loading process completed.")


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (key upper-cased, dots become underscores)
    3. YAML config
    4. Default value

    Values are returned as found; ``ClientSettings`` does the type coercion.
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace('.', '_')
    if env_key in os.environ:
        return os.environ[env_key]

    if key in _config:
        return _config[key]

    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration keys: {sorted(config_dict)}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()


# --- Typed Settings ---

def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off', ''):
        return False
    raise ConfigurationError(f"Expected a boolean value, got: {value!r}")


# Field name -> lookup keys, first hit wins. Environment names match the
# ones used by the existing MCP deployments.
_SETTING_KEYS: Dict[str, tuple] = {
    "base_url": ("DECKO_API_BASE_URL", "api.base_url"),
    "api_key": ("MCP_API_KEY", "auth.api_key"),
    "username": ("MCP_USERNAME", "auth.username"),
    "password": ("MCP_PASSWORD", "auth.password"),
    "role": ("MCP_ROLE", "auth.role"),
    "issuer": ("JWT_ISSUER", "auth.issuer"),
    "verify_tokens": ("CARDWIRE_VERIFY_TOKENS", "auth.verify_tokens"),
    "key_set_ttl_seconds": ("JWKS_CACHE_TTL", "auth.key_set_ttl_seconds"),
    "refresh_buffer_seconds": ("CARDWIRE_REFRESH_BUFFER", "auth.refresh_buffer_seconds"),
    "http_timeout_seconds": ("CARDWIRE_HTTP_TIMEOUT", "http.timeout_seconds"),
    "user_agent": ("CARDWIRE_USER_AGENT", "http.user_agent"),
    "max_retries": ("CARDWIRE_MAX_RETRIES", "retry.max_retries"),
    "initial_backoff_seconds": ("CARDWIRE_INITIAL_BACKOFF", "retry.initial_backoff_seconds"),
    "backoff_factor": ("CARDWIRE_BACKOFF_FACTOR", "retry.backoff_factor"),
    "default_page_size": ("CARDWIRE_PAGE_SIZE", "pagination.default_page_size"),
    "max_page_size": ("CARDWIRE_MAX_PAGE_SIZE", "pagination.max_page_size"),
    "max_pages": ("CARDWIRE_MAX_PAGES", "pagination.max_pages"),
}


@dataclass(frozen=True)
class ClientSettings:
    """Explicit, typed configuration for the card API client.

    Two authentication methods are supported:

    1. Username/password (``MCP_USERNAME`` + ``MCP_PASSWORD``), role optional.
    2. API key (``MCP_API_KEY``), role required (defaults to ``user``).

    When both are present the username/password pair is used.
    """
    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    role: str = DEFAULT_ROLE
    issuer: str = DEFAULT_ISSUER
    verify_tokens: bool = False
    key_set_ttl_seconds: int = 3600
    refresh_buffer_seconds: int = 300
    http_timeout_seconds: float = 30.0
    user_agent: str = "cardwire/0.3"
    max_retries: int = 3
    initial_backoff_seconds: float = 1.0
    backoff_factor: float = 2.0
    default_page_size: int = 50
    max_page_size: int = 100
    max_pages: int = 100

    @property
    def auth_method(self) -> Optional[str]:
        if self.username and self.password:
            return "username"
        if self.api_key:
            return "api_key"
        return None

    def validate(self, require_credentials: bool = True) -> "ClientSettings":
        """Checks credentials and numeric knobs.

        Args:
            require_credentials: Reject settings without any authentication
                method. Off only for unauthenticated calls such as health checks.

        Raises:
            ConfigurationError: On the first problem found.
        """
        if self.username and not self.password:
            raise ConfigurationError("MCP_PASSWORD is required for username authentication")
        if self.password and not self.username:
            raise ConfigurationError("MCP_USERNAME is required for username authentication")
        if require_credentials and self.auth_method is None:
            raise ConfigurationError("Must provide either (MCP_USERNAME + MCP_PASSWORD) or MCP_API_KEY")
        if self.auth_method == "api_key" and not self.role:
            raise ConfigurationError("MCP_ROLE is required when using API key authentication")
        if self.role and self.role not in VALID_ROLES:
            raise ConfigurationError(
                f"MCP_ROLE must be one of: {', '.join(VALID_ROLES)} (got: {self.role})"
            )
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Base URL must be an http(s) URL (got: {self.base_url})")

        for name in ("key_set_ttl_seconds", "http_timeout_seconds", "initial_backoff_seconds",
                     "default_page_size", "max_page_size", "max_pages"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive (got: {getattr(self, name)})")
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries cannot be negative (got: {self.max_retries})")
        if self.refresh_buffer_seconds < 0:
            raise ConfigurationError(f"refresh_buffer_seconds cannot be negative (got: {self.refresh_buffer_seconds})")
        if self.backoff_factor < 1:
            raise ConfigurationError(f"backoff_factor must be at least 1 (got: {self.backoff_factor})")
        return self

    def url_for(self, path: str) -> str:
        """Full URL for an API path, e.g. '/cards' -> '<base_url>/cards'."""
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def auth_payload(self) -> Dict[str, Any]:
        """Body for the /auth request, according to the authentication method."""
        if self.auth_method == "username":
            payload: Dict[str, Any] = {"username": self.username, "password": self.password}
            # role is auto-determined server side unless explicitly narrowed
            if self.role and self.role != DEFAULT_ROLE:
                payload["role"] = self.role
            return payload
        if self.auth_method == "api_key":
            return {"api_key": self.api_key, "role": self.role}
        raise ConfigurationError(f"Invalid auth method: {self.auth_method}")

    def with_overrides(self, **overrides: Any) -> "ClientSettings":
        return replace(self, **overrides).validate()

    def __repr__(self) -> str:
        return (
            f"ClientSettings(base_url={self.base_url!r}, auth_method={self.auth_method!r}, "
            f"role={self.role!r}, verify_tokens={self.verify_tokens!r})"
        )


def _coerce(name: str, field_type: Any, value: Any) -> Any:
    try:
        if field_type in (bool, "bool"):
            return _as_bool(value)
        if field_type in (int, "int"):
            return int(value)
        if field_type in (float, "float"):
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    return str(value)


def load_client_settings(require_credentials: bool = True, **overrides: Any) -> ClientSettings:
    """Builds validated ``ClientSettings`` from all configuration sources.

    Args:
        require_credentials: See ``ClientSettings.validate``.
        **overrides: Explicit values (e.g. from CLI flags) that win over
            every configuration source. ``None`` values are ignored.

    Raises:
        ConfigurationError: If the resulting settings are invalid.
    """
    load_configuration()
    values: Dict[str, Any] = {}
    for settings_field in fields(ClientSettings):
        for key in _SETTING_KEYS.get(settings_field.name, ()):
            raw = get_config(key)
            if raw is not None and raw != "":
                values[settings_field.name] = _coerce(settings_field.name, settings_field.type, raw)
                break
    values.update({k: v for k, v in overrides.items() if v is not None})
    settings = ClientSettings(**values).validate(require_credentials=require_credentials)
    logger.debug(f"Client settings loaded: {settings!r}")
    return settings


# Load configuration when the module is imported
load_configuration()
