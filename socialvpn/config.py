"""
SocialVPN configuration.

Settings come from an optional JSON file, then SVPN_* environment
variables override individual fields:

    SVPN_CERT_DIR, SVPN_STATE_PATH, SVPN_KEY_PATH, SVPN_HTTP_HOST,
    SVPN_HTTP_PORT, SVPN_START_DELAY, SVPN_INTERVAL, SVPN_DHT_TTL,
    SVPN_NETWORK, SVPN_DEFAULT_BACKEND
"""

import ipaddress
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from pydantic import BaseModel, Field, ValidationError, field_validator

from socialvpn.exceptions import ConfigError

logger = logging.getLogger(__name__)


ENV_PREFIX = "SVPN_"
DEFAULT_CONFIG_PATH = Path("social.config.json")


class BackendConfig(BaseModel):
    """One identity-provider / social-network backend."""

    name: str = Field(..., description="Name the backend is registered under")
    type: str = Field(default="static", description="Backend type (static, http)")
    options: Dict[str, Any] = Field(default_factory=dict, description="Backend-specific options")


class SocialConfig(BaseModel):
    """Engine and management-server configuration."""

    # Files
    cert_dir: Path = Field(
        default=Path("./certificates"),
        description="Directory holding local.cert and friend certificates"
    )
    state_path: Path = Field(
        default=Path("./state.json"),
        description="State snapshot written on every change"
    )
    key_path: Path = Field(
        default=Path("./private_key.pem"),
        description="PEM private key of the local certificate"
    )

    # Management surface
    http_host: str = Field(default="127.0.0.1", description="Management server host")
    http_port: int = Field(default=58888, description="Management server port")

    # Reconciliation
    start_delay: float = Field(default=30, ge=0, description="Seconds before the first cycle")
    interval: float = Field(default=300, gt=0, description="Seconds between cycles")
    dht_ttl: int = Field(default=3600, gt=0, description="Lifetime of published certificates")

    # Connectivity
    network: str = Field(default="172.31.0.0/16", description="Virtual IPv4 network for friends")

    # Backends
    default_backend: str = Field(default="static", description="Backend used by login requests")
    backends: List[BackendConfig] = Field(
        default_factory=lambda: [BackendConfig(name="static", type="static")],
        description="Configured backends"
    )

    @field_validator("network")
    @classmethod
    def check_network(cls, value: str) -> str:
        ipaddress.IPv4Network(value)
        return value


ENV_FIELDS = (
    "cert_dir",
    "state_path",
    "key_path",
    "http_host",
    "http_port",
    "start_delay",
    "interval",
    "dht_ttl",
    "network",
    "default_backend",
)


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Collect SVPN_* overrides for known fields."""
    environ = os.environ if environ is None else environ
    overrides = {}
    for name in ENV_FIELDS:
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_config(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> SocialConfig:
    """
    Load configuration.

    Args:
        path: JSON config file (skipped if missing)
        environ: Environment to read overrides from (defaults to os.environ)

    Returns:
        SocialConfig

    Raises:
        ConfigError: if the file is unreadable or a value is invalid
    """
    data: Dict[str, Any] = {}
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must be a JSON object")
        logger.info(f"Loaded config from {path}")

    data.update(env_overrides(environ))

    try:
        return SocialConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
