"""Tests for scriptpool configuration loading.

Resolution order: dataclass defaults, then config.yaml, then SCRIPTPOOL_*
environment variables (including ones loaded from .env files).
"""

import os

import pytest
import yaml

from scriptpool.config import PoolConfig, ServerConfig, get_home, load_config
from scriptpool.constants import DEFAULT_NUM_SLOTS, DEFAULT_PORT, NOTHING_YET
from scriptpool.errors import ConfigError
from scriptpool.interpreter import STANDARD_LIBS

_ENV_VARS = (
    "SCRIPTPOOL_SLOTS",
    "SCRIPTPOOL_MAX_RESULTS",
    "SCRIPTPOOL_SHUTDOWN_TIMEOUT",
    "SCRIPTPOOL_HOST",
    "SCRIPTPOOL_PORT",
)


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Isolated SCRIPTPOOL_HOME and working directory."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    monkeypatch.setenv("SCRIPTPOOL_HOME", str(home_dir))
    monkeypatch.chdir(work_dir)
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    yield home_dir
    # load_dotenv writes straight into os.environ
    for var in _ENV_VARS:
        os.environ.pop(var, None)


def _write_yaml(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaults:

    def test_no_files(self, home):
        settings = load_config()
        assert settings.pool.num_slots == DEFAULT_NUM_SLOTS
        assert settings.pool.libs == STANDARD_LIBS
        assert settings.pool.placeholder == NOTHING_YET
        assert settings.server.port == DEFAULT_PORT

    def test_get_home(self, home):
        assert get_home() == home


class TestYaml:

    def test_home_config(self, home):
        _write_yaml(home / "config.yaml", {
            "pool": {"num_slots": 8, "libs": ["math"]},
            "server": {"port": 9000, "retry_after": 5},
        })
        settings = load_config()
        assert settings.pool.num_slots == 8
        assert settings.pool.libs == ("math",)
        assert settings.server.port == 9000
        assert settings.server.retry_after == 5

    def test_explicit_path(self, home, tmp_path):
        path = _write_yaml(tmp_path / "custom.yaml", {"pool": {"max_results": 10}})
        assert load_config(path).pool.max_results == 10

    def test_missing_explicit_path(self, home, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file(self, home):
        (home / "config.yaml").write_text("", encoding="utf-8")
        assert load_config().pool.num_slots == DEFAULT_NUM_SLOTS

    def test_unknown_key(self, home):
        _write_yaml(home / "config.yaml", {"pool": {"slots": 3}})
        with pytest.raises(ConfigError, match="unknown pool keys: slots"):
            load_config()

    def test_section_not_a_mapping(self, home):
        _write_yaml(home / "config.yaml", {"server": [1, 2]})
        with pytest.raises(ConfigError, match="must be a mapping"):
            load_config()

    def test_top_level_not_a_mapping(self, home):
        (home / "config.yaml").write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config()

    def test_invalid_yaml(self, home):
        (home / "config.yaml").write_text("pool: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config()

    def test_invalid_value(self, home):
        _write_yaml(home / "config.yaml", {"pool": {"num_slots": 0}})
        with pytest.raises(ConfigError, match="num_slots"):
            load_config()


class TestEnvironment:

    def test_env_overrides_yaml(self, home, monkeypatch):
        _write_yaml(home / "config.yaml", {"pool": {"num_slots": 8}, "server": {"port": 9000}})
        monkeypatch.setenv("SCRIPTPOOL_SLOTS", "2")
        monkeypatch.setenv("SCRIPTPOOL_PORT", "9100")

        settings = load_config()
        assert settings.pool.num_slots == 2
        assert settings.server.port == 9100

    def test_shutdown_timeout_none(self, home, monkeypatch):
        monkeypatch.setenv("SCRIPTPOOL_SHUTDOWN_TIMEOUT", "none")
        assert load_config().pool.shutdown_timeout is None

    def test_bad_env_value(self, home, monkeypatch):
        monkeypatch.setenv("SCRIPTPOOL_SLOTS", "many")
        with pytest.raises(ConfigError, match="SCRIPTPOOL_SLOTS"):
            load_config()

    def test_home_dotenv(self, home):
        (home / ".env").write_text("SCRIPTPOOL_SLOTS=6\n", encoding="utf-8")
        assert load_config().pool.num_slots == 6

    def test_cwd_dotenv(self, home):
        with open(".env", "w", encoding="utf-8") as f:
            f.write("SCRIPTPOOL_HOST=0.0.0.0\n")
        assert load_config().server.host == "0.0.0.0"

    def test_process_env_beats_dotenv(self, home, monkeypatch):
        (home / ".env").write_text("SCRIPTPOOL_SLOTS=6\n", encoding="utf-8")
        monkeypatch.setenv("SCRIPTPOOL_SLOTS", "3")
        assert load_config().pool.num_slots == 3


class TestPoolConfig:

    @pytest.mark.parametrize("kwargs", [
        {"num_slots": 0},
        {"max_results": 0},
        {"shutdown_timeout": -1},
    ])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ConfigError):
            PoolConfig(**kwargs)

    def test_libs_become_tuple(self):
        assert PoolConfig(libs=["math", "string"]).libs == ("math", "string")

    def test_server_defaults(self):
        config = ServerConfig()
        assert config.host == "127.0.0.1"
        assert config.retry_after == 1
