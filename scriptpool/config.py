"""Configuration for the script pool and its HTTP gateway.

Resolution order (later wins):
    1. Dataclass defaults
    2. ``pool:`` / ``server:`` sections of config.yaml
       (explicit path, else ``$SCRIPTPOOL_HOME/config.yaml``)
    3. ``SCRIPTPOOL_*`` environment variables, after loading
       ``$SCRIPTPOOL_HOME/.env`` and then ``./.env``
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

import yaml
from dotenv import find_dotenv, load_dotenv

from .constants import (
    DEFAULT_HOME_DIRNAME,
    DEFAULT_HOST,
    DEFAULT_MAX_RESULTS,
    DEFAULT_NUM_SLOTS,
    DEFAULT_PORT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    NOTHING_YET,
    SCRIPTPOOL_HOME_ENV,
)
from .errors import ConfigError
from .interpreter import STANDARD_LIBS

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Configuration for DispatchPool."""

    num_slots: int = DEFAULT_NUM_SLOTS
    libs: Tuple[str, ...] = STANDARD_LIBS  # Lua standard libraries kept in each instance

    # Results
    max_results: int = DEFAULT_MAX_RESULTS  # Oldest results are evicted beyond this
    placeholder: str = NOTHING_YET  # Legacy read when nothing is pending

    # Seconds teardown waits for in-flight scripts (None = wait forever)
    shutdown_timeout: Optional[float] = DEFAULT_SHUTDOWN_TIMEOUT

    def __post_init__(self):
        if self.num_slots < 1:
            raise ConfigError(f"num_slots must be >= 1, got {self.num_slots}")
        if self.max_results < 1:
            raise ConfigError(f"max_results must be >= 1, got {self.max_results}")
        if self.shutdown_timeout is not None and self.shutdown_timeout < 0:
            raise ConfigError(f"shutdown_timeout must be >= 0, got {self.shutdown_timeout}")
        self.libs = tuple(self.libs)


@dataclass
class ServerConfig:
    """Configuration for the HTTP gateway."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    retry_after: int = 1  # Seconds advertised to clients on 503 Busy


@dataclass
class ScriptPoolSettings:
    pool: PoolConfig = field(default_factory=PoolConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def get_home() -> Path:
    """Resolve the scriptpool home directory (respects SCRIPTPOOL_HOME)."""
    return Path(os.getenv(SCRIPTPOOL_HOME_ENV, Path.home() / DEFAULT_HOME_DIRNAME))


def _optional_float(raw: str) -> Optional[float]:
    if raw.strip().lower() in ("", "none", "null"):
        return None
    return float(raw)


# env var -> (section, key, parser)
_ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "SCRIPTPOOL_SLOTS": ("pool", "num_slots", int),
    "SCRIPTPOOL_MAX_RESULTS": ("pool", "max_results", int),
    "SCRIPTPOOL_SHUTDOWN_TIMEOUT": ("pool", "shutdown_timeout", _optional_float),
    "SCRIPTPOOL_HOST": ("server", "host", str),
    "SCRIPTPOOL_PORT": ("server", "port", int),
}

_ALLOWED_KEYS = {
    "pool": {"num_slots", "libs", "max_results", "placeholder", "shutdown_timeout"},
    "server": {"host", "port", "retry_after"},
}


def _load_env_files(home: Path) -> None:
    env_path = home / ".env"
    if env_path.exists():
        try:
            load_dotenv(env_path, encoding="utf-8")
        except UnicodeDecodeError:
            load_dotenv(env_path, encoding="latin-1")
    # Also try the working directory .env as fallback
    cwd_env = find_dotenv(usecwd=True)
    if cwd_env:
        load_dotenv(cwd_env)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return data


def load_config(path: Optional[Union[str, Path]] = None) -> ScriptPoolSettings:
    """
    Build settings from defaults, config.yaml and the environment.

    Args:
        path: Explicit YAML file; must exist if given

    Raises:
        ConfigError: On unreadable files, unknown keys or bad values
    """
    home = get_home()
    _load_env_files(home)

    sections: Dict[str, Dict[str, Any]] = {"pool": {}, "server": {}}

    config_path = Path(path) if path else home / "config.yaml"
    if path and not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    if config_path.exists():
        data = _read_yaml(config_path)
        for section, allowed in _ALLOWED_KEYS.items():
            values = data.get(section) or {}
            if not isinstance(values, dict):
                raise ConfigError(f"{config_path}: '{section}' must be a mapping")
            unknown = set(values) - allowed
            if unknown:
                raise ConfigError(
                    f"{config_path}: unknown {section} keys: {', '.join(sorted(unknown))}"
                )
            sections[section].update(values)
        logger.debug(f"Loaded config from {config_path}")

    for env_var, (section, key, parse) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None:
            continue
        try:
            sections[section][key] = parse(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {env_var}: {raw!r}") from e

    try:
        return ScriptPoolSettings(
            pool=PoolConfig(**sections["pool"]),
            server=ServerConfig(**sections["server"]),
        )
    except TypeError as e:
        raise ConfigError(str(e)) from e
