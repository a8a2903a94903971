"""
Run-level settings: CLI flags, environment variables and the user config file
merged into one frozen object.

Priority chain (highest to lowest):
  1. Init kwargs  - CLI flags passed by click (``--project`` also reads
     ``INCUS_PROJECT`` through click)
  2. Env vars     - ``INCUS_COMPOSE_*`` prefix, e.g. ``INCUS_COMPOSE_NETWORK_TYPE``
  3. YAML file    - ``$HOME/.config/incus-compose.yaml``
  4. Code defaults
"""
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import structlog
import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

log = structlog.get_logger(__name__)

CONFIG_BASENAME = "incus-compose"

# YAML key -> settings field
_YAML_KEYS = {
    "remote": "remote",
    "incus-project": "project",
    "parallel": "parallel",
    "endpoint-policy": "endpoint_policy",
}


class EndpointPolicy(str, Enum):
    """
    What to do when a resource resolves to more than one remote.
    """
    FIRST = "first"
    ALL = "all"


def default_config_path() -> Optional[Path]:
    """
    Returns the user config file, if one exists.
    """
    base = Path.home() / ".config"
    for ext in ("yaml", "yml"):
        candidate = base / f"{CONFIG_BASENAME}.{ext}"
        if candidate.is_file():
            return candidate
    return None


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from the incus-compose YAML config file."""

    def __init__(self, settings_cls, yaml_path: Optional[Path]):
        super().__init__(settings_cls)
        self._data: Dict[str, Any] = {}
        if yaml_path and yaml_path.is_file():
            try:
                raw = yaml.safe_load(yaml_path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as exc:
                log.error("failed to load config file", path=str(yaml_path), err=str(exc))
                raw = {}
            if isinstance(raw, dict):
                self._data = _flatten(raw)
            else:
                log.error("ignoring config file, expected a mapping", path=str(yaml_path))

    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        val = self._data.get(field_name)
        return val, field_name, False

    def __call__(self) -> Dict[str, Any]:
        return dict(self._data)


def _flatten(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = {}
    for key, field_name in _YAML_KEYS.items():
        if raw.get(key) not in (None, ""):
            data[field_name] = raw[key]
    network = raw.get("network")
    if isinstance(network, dict):
        if network.get("type"):
            data["network_type"] = network["type"]
        if network.get("uplink"):
            data["network_uplink"] = network["uplink"]
    return data


# Thread-local storage for the YAML path during construction.
_tls = threading.local()


class ComposeSettings(BaseSettings):
    """
    Settings for one incus-compose invocation.

    Constructed once in the CLI root and passed explicitly to whatever
    needs it; nothing reads configuration from module-level state.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "INCUS_COMPOSE_",
    }

    config_path: Optional[Path] = None

    # Remote target
    remote: Optional[str] = None
    project: Optional[str] = None
    force_local: bool = False

    # Default network
    network_type: Optional[str] = None
    network_uplink: Optional[str] = None

    # Execution
    dry_run: bool = False
    parallel: int = Field(default=1, ge=1)
    endpoint_policy: EndpointPolicy = EndpointPolicy.FIRST

    # Output
    verbose: bool = False
    log_json: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Insert the YAML source between env vars and defaults."""
        yaml_path = getattr(_tls, "yaml_path", None)
        return (
            init_settings,
            env_settings,
            YamlSettingsSource(settings_cls, yaml_path),
        )

    @classmethod
    def from_cli(cls, config_path: Optional[str] = None, **cli_flags: Any) -> "ComposeSettings":
        """
        Constructs settings from a CLI invocation.

        Flags left unset (None) are dropped so they do not mask the
        environment or the config file.

        :param config_path: Explicit config file, or None for the default location.
        :param cli_flags: Flag values keyed by settings field name.
        :return: The merged settings.
        """
        yaml_path = Path(config_path) if config_path else default_config_path()
        flags = {k: v for k, v in cli_flags.items() if v is not None}

        _tls.yaml_path = yaml_path
        try:
            return cls(config_path=yaml_path, **flags)
        finally:
            _tls.yaml_path = None
