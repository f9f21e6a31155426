"""Runtime settings for flynn-dns.

Settings are read once at startup into an immutable ``Settings`` value that
is passed to every component. Sources, lowest to highest precedence:

    1. Built-in defaults
    2. Optional YAML file (CONFIG_PATH, default /config/flynn-dns.yaml)
       Example:
         cluster_domain: example.com
         controller_auth_key: s3cret
         cf_email: ops@example.com
         cf_key: 0123456789abcdef
         poll_interval_seconds: 600
    3. Environment variables (upper-case names of the same keys)

Required:
    CLUSTER_DOMAIN          Root domain whose routes and Cloudflare zone are managed
    CONTROLLER_AUTH_KEY     Flynn controller auth key (HTTP Basic password)
    CF_EMAIL                Cloudflare account email
    CF_KEY                  Cloudflare global API key

Optional:
    CONTROLLER_URL          Controller base URL (default: https://controller.<CLUSTER_DOMAIN>)
    CONTROLLER_VERIFY_TLS   Verify the controller TLS certificate (default: true)
    CF_API_URL              Cloudflare API base URL (default: https://api.cloudflare.com/client/v4)
    REQUEST_TIMEOUT_SECONDS Per-request HTTP timeout (default: 10)
    POLL_INTERVAL_SECONDS   Seconds between sync passes (default: 600)
    SYNC_MODE               "once" or "watch" (default: watch)
    LOG_LEVEL               DEBUG, INFO, WARNING, ERROR (default: INFO)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from flynn_dns.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/config/flynn-dns.yaml"
DEFAULT_CF_API_URL = "https://api.cloudflare.com/client/v4"
DEFAULT_POLL_INTERVAL_SECONDS = 600
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

REQUIRED_KEYS = ("CLUSTER_DOMAIN", "CONTROLLER_AUTH_KEY", "CF_EMAIL", "CF_KEY")
OPTIONAL_KEYS = (
    "CONTROLLER_URL",
    "CONTROLLER_VERIFY_TLS",
    "CF_API_URL",
    "REQUEST_TIMEOUT_SECONDS",
    "POLL_INTERVAL_SECONDS",
    "SYNC_MODE",
    "LOG_LEVEL",
)
SYNC_MODES = ("once", "watch")


@dataclass(frozen=True)
class Settings:
    """Validated configuration shared by every component of a run."""

    cluster_domain: str
    controller_auth_key: str
    cf_email: str
    cf_key: str
    controller_url: str = ""
    controller_verify_tls: bool = True
    cf_api_url: str = DEFAULT_CF_API_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    sync_mode: str = "watch"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.controller_url:
            object.__setattr__(
                self, "controller_url", default_controller_url(self.cluster_domain)
            )

    def __repr__(self) -> str:
        # Credentials stay out of logs and tracebacks.
        return (
            f"Settings(cluster_domain={self.cluster_domain!r}, "
            f"controller_url={self.controller_url!r}, sync_mode={self.sync_mode!r}, "
            f"poll_interval_seconds={self.poll_interval_seconds})"
        )


def default_controller_url(cluster_domain: str) -> str:
    return f"https://controller.{cluster_domain}"


def normalize_domain(domain: str) -> str:
    """Lowercase a domain and drop any trailing root dot."""
    return domain.strip().lower().rstrip(".")


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip()
    if not text:
        return default
    return text.lower() in {"1", "true", "yes", "y", "on"}


def _parse_positive(name: str, value: Any, kind: type) -> Any:
    try:
        parsed = kind(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be greater than zero, got {value!r}")
    return parsed


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Read settings from a YAML file.

    A missing file yields an empty mapping. Keys are normalized to the
    upper-case environment variable names.
    """
    path = Path(config_path)
    if not path.is_file():
        logger.debug(f"Config file {config_path} not found, using environment only")
        return {}

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )

    known = set(REQUIRED_KEYS) | set(OPTIONAL_KEYS)
    values: Dict[str, Any] = {}
    for key, value in data.items():
        name = str(key).strip().upper()
        if name not in known:
            logger.warning(f"Ignoring unknown key '{key}' in {config_path}")
            continue
        if value is not None:
            values[name] = value
    return values


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[str] = None,
) -> Settings:
    """Build ``Settings`` from the config file and environment.

    Raises:
        ConfigurationError: if a required option is missing or a value is invalid.
    """
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = env.get("CONFIG_PATH", DEFAULT_CONFIG_PATH)

    raw: Dict[str, Any] = load_config_file(config_path) if config_path else {}
    for key in REQUIRED_KEYS + OPTIONAL_KEYS:
        value = env.get(key)
        if value is not None and str(value).strip():
            raw[key] = value

    values = {key: str(raw.get(key, "")).strip() for key in REQUIRED_KEYS}
    missing = [key for key, value in values.items() if not value]
    if missing:
        raise ConfigurationError(f"Required settings are not set: {', '.join(missing)}")

    sync_mode = str(raw.get("SYNC_MODE", "watch")).strip().lower()
    if sync_mode not in SYNC_MODES:
        raise ConfigurationError(f"Invalid SYNC_MODE: {sync_mode}. Use 'once' or 'watch'")

    return Settings(
        cluster_domain=normalize_domain(values["CLUSTER_DOMAIN"]),
        controller_auth_key=values["CONTROLLER_AUTH_KEY"],
        cf_email=values["CF_EMAIL"],
        cf_key=values["CF_KEY"],
        controller_url=str(raw.get("CONTROLLER_URL", "")).strip().rstrip("/"),
        controller_verify_tls=_parse_bool(raw.get("CONTROLLER_VERIFY_TLS"), default=True),
        cf_api_url=str(raw.get("CF_API_URL", DEFAULT_CF_API_URL)).strip().rstrip("/"),
        request_timeout=_parse_positive(
            "REQUEST_TIMEOUT_SECONDS",
            raw.get("REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            float,
        ),
        poll_interval_seconds=_parse_positive(
            "POLL_INTERVAL_SECONDS",
            raw.get("POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS),
            int,
        ),
        sync_mode=sync_mode,
        log_level=str(raw.get("LOG_LEVEL", "INFO")).strip().upper() or "INFO",
    )
