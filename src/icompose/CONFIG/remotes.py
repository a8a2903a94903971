"""
Incus client remote configuration.

Reads the same ``config.yml`` the ``incus`` command line client uses:
``$INCUS_CONF/config.yml``, else ``~/.config/incus/config.yml``.
"""
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

import structlog
import yaml
from pydantic import BaseModel, ValidationError

from ..UTILS.errors import ManifestError

log = structlog.get_logger(__name__)

LOCAL_REMOTE = "local"
LOCAL_ADDR = "unix://"


class Remote(BaseModel):
    """A single configured remote."""
    model_config = {"frozen": True}

    addr: str = ""
    project: str = "default"
    protocol: str = "incus"
    public: bool = False


class RemoteRegistry(BaseModel):
    """The set of remotes known to this client, plus the default one."""
    model_config = {"frozen": True}

    default_remote: str = LOCAL_REMOTE
    remotes: Dict[str, Remote] = {LOCAL_REMOTE: Remote(addr=LOCAL_ADDR)}

    def get(self, name: str) -> Optional[Remote]:
        return self.remotes.get(name)


def config_dir(environ: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    """
    Locates the Incus client config directory.

    :param environ: Environment to consult, defaults to os.environ.
    :return: The directory, or None when no home directory can be found.
    """
    env = os.environ if environ is None else environ
    if env.get("INCUS_CONF"):
        return Path(env["INCUS_CONF"])
    home = env.get("HOME")
    if home and Path(home).exists():
        return Path(home) / ".config" / "incus"
    try:
        return Path.home() / ".config" / "incus"
    except RuntimeError:
        return None


def load_remotes(force_local: bool = False, environ: Optional[Mapping[str, str]] = None) -> RemoteRegistry:
    """
    Loads the remote registry from the Incus client config.

    Falls back to the built-in local remote when forced, when no home
    directory exists or when the config file is absent.

    :param force_local: Ignore the config file entirely.
    :param environ: Environment to consult, defaults to os.environ.
    :raises ManifestError: If the config file exists but is invalid.
    """
    directory = None if force_local else config_dir(environ)
    if directory is None:
        return RemoteRegistry()

    path = directory / "config.yml"
    if not path.is_file():
        log.debug("no incus client config, using local remote", path=str(path))
        return RemoteRegistry()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ManifestError(f"cannot read incus config {path}: {exc}") from exc

    remotes = {LOCAL_REMOTE: Remote(addr=LOCAL_ADDR)}
    try:
        for name, spec in (raw.get("remotes") or {}).items():
            remotes[name] = Remote(**(spec or {}))
    except (TypeError, ValidationError) as exc:
        raise ManifestError(f"invalid remote definition in {path}: {exc}") from exc

    return RemoteRegistry(
        default_remote=raw.get("default-remote") or LOCAL_REMOTE,
        remotes=remotes,
    )
