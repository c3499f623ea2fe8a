import pytest

from wardcord.configuration.app_configuration import (
    DEFAULT_STANDING_THRESHOLDS,
    AppConfig,
    validate_thresholds,
)
from wardcord.datatypes.discord_datatypes import ChannelID
from wardcord.datatypes.violation_datatypes import AccountStanding, ViolationSeverity


def _write_config(tmp_path, text):
    path = tmp_path / "app_config.yml"
    path.write_text(text, encoding="utf-8")
    return AppConfig(path)


def test_missing_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("ORPC_API_URL", raising=False)
    config = AppConfig(tmp_path / "absent.yml")

    assert config.data == {}
    assert config.backend_url == "http://localhost:3000/rpc"
    assert config.message_rate_limit == 3
    assert config.standing_thresholds == DEFAULT_STANDING_THRESHOLDS
    assert config.severity_weights[ViolationSeverity.CRITICAL] == 15
    assert config.default_expiration_days[ViolationSeverity.CRITICAL] == 0
    assert config.audit_channel_id is None
    assert config.standing_roles == {}


def test_values_are_read_from_yaml(tmp_path, monkeypatch):
    monkeypatch.delenv("ORPC_API_URL", raising=False)
    config = _write_config(
        tmp_path,
        """
backend:
  url: "http://backend:4000/rpc/"
  timeout_seconds: 3
rate_limit:
  max_messages: 5
  window_seconds: 30
standing:
  severity_weights:
    low: 2
    bogus: 9
expiration:
  repeat_offense_window_days: 30
guild:
  audit_channel_id: "1234"
  standing_roles:
    LIMITED: 55
    AT_RISK: null
    WHATEVER: 1
""",
    )

    assert config.backend_url == "http://backend:4000/rpc"
    assert config.backend_timeout == 3.0
    assert config.message_rate_limit == 5
    assert config.rate_limit_window_seconds == 30.0
    assert config.severity_weights[ViolationSeverity.LOW] == 2
    assert config.severity_weights[ViolationSeverity.MEDIUM] == 3
    assert config.repeat_offense_window_days == 30
    assert config.audit_channel_id == ChannelID(1234)
    assert config.standing_roles == {AccountStanding.LIMITED: 55}


def test_environment_overrides_backend_url(tmp_path, monkeypatch):
    monkeypatch.setenv("ORPC_API_URL", "http://env:1/rpc/")
    config = _write_config(tmp_path, "backend:\n  url: http://file/rpc\n")
    assert config.backend_url == "http://env:1/rpc"


def test_invalid_thresholds_in_config_raise(tmp_path):
    config = _write_config(tmp_path, "standing:\n  thresholds:\n    VERY_LIMITED: 40\n")
    with pytest.raises(ValueError):
        _ = config.standing_thresholds


def test_malformed_yaml_yields_empty_config(tmp_path):
    config = _write_config(tmp_path, "backend: [unclosed\n")
    assert config.data == {}


def test_validate_thresholds_returns_ordered_copy():
    validated = validate_thresholds(dict(reversed(list(DEFAULT_STANDING_THRESHOLDS.items()))))
    assert list(validated) == [
        AccountStanding.LIMITED,
        AccountStanding.VERY_LIMITED,
        AccountStanding.AT_RISK,
        AccountStanding.SUSPENDED,
    ]


def test_reload_picks_up_changes(tmp_path):
    config = _write_config(tmp_path, "rate_limit:\n  max_messages: 4\n")
    assert config.message_rate_limit == 4
    config.config_path.write_text("rate_limit:\n  max_messages: 6\n", encoding="utf-8")
    config.reload()
    assert config.message_rate_limit == 6
