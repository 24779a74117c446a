"""Layered configuration for clustersync.

Sources, lowest precedence first:

1. model defaults
2. ``~/.clustersync/config.toml``
3. the nearest ``.clustersync/config.toml`` at or above the working directory
4. a file named on the command line
5. ``CLUSTERSYNC_*`` environment variables
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore

from pydantic import ValidationError

from .config_schema import ClusterSyncConfig


CONFIG_DIR_NAME = ".clustersync"
CONFIG_FILENAME = "config.toml"

# CLUSTERSYNC_* variable -> dotted config key
ENV_MAPPING: Dict[str, str] = {
    "CLUSTERSYNC_REPO_BASE_PATH": "repository.base_path",
    "CLUSTERSYNC_GLOBAL_REPO_PATH": "repository.global_repo_path",
    "CLUSTERSYNC_SITES_PATH": "repository.sites_path",
    "CLUSTERSYNC_SYNC_COMMIT_MESSAGE": "repository.sync_commit_message",
    "CLUSTERSYNC_EVERY_N_CYCLES": "sync.execute_every_n_cycles",
    "CLUSTERSYNC_MAIN_BRANCH": "sync.main_branch",
    "CLUSTERSYNC_REMOTE_PREFIX": "sync.remote_name_prefix",
    "CLUSTERSYNC_GIT_AUTHOR": "git.author_name",
    "CLUSTERSYNC_GIT_EMAIL": "git.author_email",
    "CLUSTERSYNC_CREDENTIALS_DIR": "git.credentials_dir",
    "CLUSTERSYNC_SSH_OPTIONS": "git.ssh_options",
    "CLUSTERSYNC_LOCAL_ADDRESS": "cluster.local_address",
}

# Keys given as comma separated lists in the environment
_LIST_KEYS = {"git.ssh_options"}


class ConfigError(Exception):
    """Configuration could not be read or did not validate."""


def _get_user_config_dir() -> Path:
    return Path.home() / CONFIG_DIR_NAME


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Nearest ``.clustersync`` directory at or above ``project_path``.

    The user-level directory never counts as a project directory.
    """
    start = (project_path or Path.cwd()).resolve()
    user_dir = _get_user_config_dir()
    for directory in (start, *start.parents):
        candidate = directory / CONFIG_DIR_NAME
        if candidate.is_dir() and candidate != user_dir:
            return candidate
    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Parse one TOML file.

    Raises:
        ConfigError: If the file is missing or not valid TOML
    """
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` updated with ``override``; tables merge, everything else is replaced."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _config_files(
    project_path: Optional[Path],
    config_file: Optional[Path],
) -> Iterator[Tuple[str, Path]]:
    """Candidate files in precedence order, labelled by layer."""
    yield "user", _get_user_config_dir() / CONFIG_FILENAME
    project_dir = _get_project_config_dir(project_path)
    if project_dir is not None:
        yield "project", project_dir / CONFIG_FILENAME
    if config_file is not None:
        yield "explicit", Path(config_file)


def _env_overrides() -> Dict[str, Any]:
    """Nested dict built from the ``CLUSTERSYNC_*`` variables that are set.

    Values stay strings (lists aside); pydantic coerces them.
    """
    overrides: Dict[str, Any] = {}
    for env_var, dotted in ENV_MAPPING.items():
        raw = os.environ.get(env_var)
        if raw is None:
            continue
        value: Any = raw
        if dotted in _LIST_KEYS:
            value = [item.strip() for item in raw.split(",") if item.strip()]
        *sections, key = dotted.split(".")
        table = overrides
        for section in sections:
            table = table.setdefault(section, {})
        table[key] = value
    return overrides


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
    config_file: Optional[Path] = None,
) -> ClusterSyncConfig:
    """Build the effective configuration from every layer.

    A broken user-level file only warns. A broken project or explicit file,
    or a merged result that fails validation, is fatal.

    Raises:
        ConfigError: If a required layer is unreadable or values are invalid
    """
    merged: Dict[str, Any] = {}
    for layer, path in _config_files(project_path, config_file):
        if layer != "explicit" and not path.exists():
            continue
        try:
            merged = _deep_merge(merged, _load_toml(path))
        except ConfigError as e:
            if layer != "user":
                raise ConfigError(f"Invalid {layer} config: {e}") from e
            warnings.warn(f"Ignoring invalid user config at {path}: {e}", UserWarning)

    if not skip_env:
        merged = _deep_merge(merged, _env_overrides())

    try:
        return ClusterSyncConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}") from e


_cache: Dict[Optional[Path], ClusterSyncConfig] = {}
_cache_lock = threading.Lock()


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> ClusterSyncConfig:
    """Configuration for ``project_path``, loaded once per path."""
    key = project_path.resolve() if project_path else None
    with _cache_lock:
        if force_reload or key not in _cache:
            _cache[key] = load_config(project_path)
        return _cache[key]


def clear_config_cache() -> None:
    with _cache_lock:
        _cache.clear()
