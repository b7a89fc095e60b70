"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for tiercache:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.tiercache/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Global config** -- a single :class:`~tiercache.models.GlobalConfig`
  JSON file with cache capacities, the TTL table and metrics settings.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables and the config file into the effective settings.

All file writes go through :func:`_atomic_write` (temp file, then rename).
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from tiercache.exceptions import ConfigError
from tiercache.models import GlobalConfig

_APP_NAME = "tiercache"
_CONFIG_FILENAME = "config.json"
_STORE_DIRNAME = "store"

ENV_CACHE_DIR = "TIERCACHE_CACHE_DIR"
ENV_CONTEXT_LABEL = "TIERCACHE_CONTEXT_LABEL"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/tiercache/`` (default ``~/.config/tiercache/``).
    On macOS/Windows: ``~/.tiercache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    The persistent tier keeps its store under ``<cache_dir>/store/``. Its
    contents can be deleted at any time.

    On Linux/BSD: ``$XDG_CACHE_HOME/tiercache/`` (default ``~/.cache/tiercache/``).
    On macOS/Windows: ``~/.tiercache/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs, metric exports), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/tiercache/`` (default ``~/.local/share/tiercache/``).
    On macOS/Windows: ``~/.tiercache/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_store_dir(cache_dir: Optional[str | Path] = None) -> Path:
    """Return the directory holding the persistent tier's store.

    Args:
        cache_dir: Explicit cache root. When ``None`` the
            ``TIERCACHE_CACHE_DIR`` environment variable is consulted,
            then :func:`get_cache_dir`.
    """
    if cache_dir is None:
        env_dir = os.environ.get(ENV_CACHE_DIR)
        root = Path(env_dir) if env_dir else get_cache_dir()
    else:
        root = Path(cache_dir)
    return root / _STORE_DIRNAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created next to *path* so ``os.replace`` is an
    atomic rename on POSIX systems. The temp file is removed on failure.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


def write_text_atomic(path: Path, data: str) -> None:
    """Public wrapper around :func:`_atomic_write` for exported artefacts."""
    _atomic_write(path, data)


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~tiercache.models.GlobalConfig`, or a
        default instance when the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    _atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


def reset_global_config() -> GlobalConfig:
    """Overwrite the config file with defaults and return them."""
    config = GlobalConfig()
    save_global_config(config)
    return config


# --- Precedence resolution ---


def resolve_config(
    cli_cache_dir: Optional[str] = None,
    cli_context_label: Optional[str] = None,
) -> tuple[GlobalConfig, Path]:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_cache_dir``, ``cli_context_label``)
        2. Environment variables (``TIERCACHE_CACHE_DIR``,
           ``TIERCACHE_CONTEXT_LABEL``)
        3. User config (``~/.config/tiercache/config.json``)
        4. Defaults

    Returns:
        A tuple of ``(global_config, store_dir)``.
    """
    config = load_global_config()

    env_label = os.environ.get(ENV_CONTEXT_LABEL)
    if cli_context_label is not None:
        config.metrics.context_label = cli_context_label
    elif env_label:
        config.metrics.context_label = env_label

    return config, get_store_dir(cli_cache_dir)
