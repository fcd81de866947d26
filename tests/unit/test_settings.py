"""Unit tests for configuration loading."""

import pytest
import yaml

from tracker.config.settings import DatabaseSettings, load_settings
from tracker.utils.exceptions import ConfigurationError

TOKEN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def chain(**overrides):
    data = {
        "name": "sepolia",
        "rpc_url": "http://localhost:8545",
        "chain_id": 11155111,
        "contract_address": TOKEN,
    }
    data.update(overrides)
    return data


@pytest.fixture
def write_config(tmp_path):
    def _write(data):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data))
        return path
    return _write


class TestLoadSettings:
    """YAML loading and validation."""

    def test_defaults(self, write_config):
        settings = load_settings(write_config({"chains": [chain()]}))

        sepolia = settings.get_chain("sepolia")
        assert sepolia.contract_address == TOKEN.lower()
        assert sepolia.block_delay == 6
        assert sepolia.start_block == 0
        assert settings.points.rate == 0.05
        assert settings.points.interval == 60
        assert settings.broker.queue == "points.calculate"

    def test_block_delay_is_fixed(self, write_config):
        settings = load_settings(write_config({"chains": [chain(block_delay=12)]}))
        assert settings.chains[0].block_delay == 6

    def test_chain_order_is_kept(self, write_config):
        settings = load_settings(
            write_config({"chains": [chain(name="b"), chain(name="a"), chain(name="c")]})
        )
        assert [c.name for c in settings.chains] == ["b", "a", "c"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(tmp_path / "absent.yaml")

    def test_no_chains(self, write_config):
        with pytest.raises(ConfigurationError, match="no chains"):
            load_settings(write_config({"points": {"rate": 1}}))

    def test_invalid_contract_address(self, write_config):
        with pytest.raises(ConfigurationError):
            load_settings(write_config({"chains": [chain(contract_address="0x1234")]}))

    def test_duplicate_chain_names(self, write_config):
        with pytest.raises(ConfigurationError):
            load_settings(write_config({"chains": [chain(), chain()]}))

    def test_invalid_broker_scheme(self, write_config):
        with pytest.raises(ConfigurationError):
            load_settings(write_config({"chains": [chain()], "broker": {"url": "http://x"}}))

    def test_unknown_chain(self, write_config):
        settings = load_settings(write_config({"chains": [chain()]}))
        with pytest.raises(ConfigurationError, match="unknown chain"):
            settings.get_chain("mainnet")


class TestEnvironmentOverrides:
    """Environment variables win over the YAML file."""

    def test_prefixed_nested_variable(self, write_config, monkeypatch):
        monkeypatch.setenv("TRACKER_POINTS__RATE", "0.1")
        settings = load_settings(
            write_config({"chains": [chain()], "points": {"interval": 30}})
        )

        assert settings.points.rate == 0.1
        assert settings.points.interval == 30

    def test_legacy_variables(self, write_config, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "s3cret")
        monkeypatch.setenv("RABBITMQ_URL", "amqp://tracker:pw@mq:5672/")
        monkeypatch.setenv("POINTS_RATE", "0.2")
        settings = load_settings(write_config({"chains": [chain()]}))

        assert settings.database.password == "s3cret"
        assert settings.broker.url == "amqp://tracker:pw@mq:5672/"
        assert settings.points.rate == 0.2

    def test_config_path_from_environment(self, write_config, monkeypatch):
        path = write_config({"chains": [chain(name="from-env")]})
        monkeypatch.setenv("TRACKER_CONFIG", str(path))

        assert load_settings().chains[0].name == "from-env"


class TestDatabaseSettings:
    """SQLAlchemy URL construction."""

    def test_url_from_parts(self):
        settings = DatabaseSettings(host="db", user="tracker", password="p@ss", dbname="points")
        assert settings.sqlalchemy_url == "postgresql+asyncpg://tracker:p%40ss@db:5432/points"

    def test_explicit_url_wins(self):
        settings = DatabaseSettings(url="sqlite+aiosqlite:///tracker.db", host="db")
        assert settings.sqlalchemy_url == "sqlite+aiosqlite:///tracker.db"
