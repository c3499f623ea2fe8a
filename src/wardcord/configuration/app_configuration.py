from __future__ import annotations
from pathlib import Path
import fcntl
import os
from typing import Any, Dict, Optional
import yaml

from wardcord.datatypes.discord_datatypes import ChannelID
from wardcord.datatypes.violation_datatypes import AccountStanding, ViolationSeverity
from wardcord.util.logger import get_logger

logger = get_logger("app_configuration")


WARDCORD_HOME = Path(os.getenv("WARDCORD_HOME", ".")).resolve()
CONFIG_PATH = WARDCORD_HOME / "config" / "app_config.yml"

DEFAULT_BACKEND_URL = "http://localhost:3000/rpc"
DEFAULT_SEVERITY_WEIGHTS: Dict[ViolationSeverity, int] = {
    ViolationSeverity.LOW: 1,
    ViolationSeverity.MEDIUM: 3,
    ViolationSeverity.HIGH: 7,
    ViolationSeverity.CRITICAL: 15,
}
DEFAULT_STANDING_THRESHOLDS: Dict[AccountStanding, int] = {
    AccountStanding.LIMITED: 1,
    AccountStanding.VERY_LIMITED: 6,
    AccountStanding.AT_RISK: 15,
    AccountStanding.SUSPENDED: 30,
}
# 0 days means permanent
DEFAULT_EXPIRATION_DAYS: Dict[ViolationSeverity, int] = {
    ViolationSeverity.LOW: 7,
    ViolationSeverity.MEDIUM: 30,
    ViolationSeverity.HIGH: 90,
    ViolationSeverity.CRITICAL: 0,
}


def _severity_mapping(raw: Any, defaults: Dict[ViolationSeverity, int], key: str) -> Dict[ViolationSeverity, int]:
    result = dict(defaults)
    if not isinstance(raw, dict):
        return result
    for name, value in raw.items():
        try:
            severity = ViolationSeverity(str(name).upper())
            result[severity] = int(value)
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] Ignoring invalid %s entry %r=%r", key, name, value)
    return result


def validate_thresholds(thresholds: Dict[AccountStanding, int]) -> Dict[AccountStanding, int]:
    """Ensure LIMITED < VERY_LIMITED < AT_RISK < SUSPENDED and LIMITED >= 1.

    Raises:
        ValueError: If a tier is missing or the values are not strictly increasing.
    """
    ordered = [AccountStanding.LIMITED, AccountStanding.VERY_LIMITED, AccountStanding.AT_RISK, AccountStanding.SUSPENDED]
    try:
        values = [int(thresholds[standing]) for standing in ordered]
    except KeyError as exc:
        raise ValueError(f"Missing standing threshold for {exc.args[0]}") from exc
    if values[0] < 1:
        raise ValueError("LIMITED threshold must be at least 1")
    for lower, upper in zip(values, values[1:]):
        if upper <= lower:
            raise ValueError(f"Standing thresholds must be strictly increasing, got {values}")
    return dict(zip(ordered, values))


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches contents of ``config/app_config.yml`` and exposes typed
    properties with defaults for every tunable of the warning system. Uses
    fcntl file locks for safe concurrent access across processes.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                # Acquire a shared lock for reading
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)

                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except (OSError, yaml.YAMLError) as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    def _section(self, name: str) -> Dict[str, Any]:
        section = self._data.get(name, {})
        return section if isinstance(section, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping (empty on error)."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # Backend
    # --------------------------
    @property
    def backend_url(self) -> str:
        """Base URL of the oRPC endpoint. ``ORPC_API_URL`` in the environment wins."""
        env_url = os.getenv("ORPC_API_URL")
        if env_url:
            return env_url.rstrip("/")
        return str(self._section("backend").get("url") or DEFAULT_BACKEND_URL).rstrip("/")

    @property
    def backend_timeout(self) -> float:
        return float(self._section("backend").get("timeout_seconds", 10.0))

    # --------------------------
    # Enforcement
    # --------------------------
    @property
    def expiration_check_interval_minutes(self) -> float:
        return float(self._section("expiration_sweeper").get("interval_minutes", 30.0))

    @property
    def message_rate_limit(self) -> int:
        """Messages allowed per window for users under RATE_LIMIT."""
        return int(self._section("rate_limit").get("max_messages", 3))

    @property
    def rate_limit_window_seconds(self) -> float:
        return float(self._section("rate_limit").get("window_seconds", 60.0))

    @property
    def snapshot_path(self) -> Path:
        """Location of the restriction snapshot, relative paths resolve under WARDCORD_HOME."""
        raw = self._section("snapshot").get("path", "data/warning_system.json")
        path = Path(str(raw))
        return path if path.is_absolute() else WARDCORD_HOME / path

    # --------------------------
    # Standing
    # --------------------------
    @property
    def severity_weights(self) -> Dict[ViolationSeverity, int]:
        return _severity_mapping(self._section("standing").get("severity_weights"), DEFAULT_SEVERITY_WEIGHTS, "severity_weights")

    @property
    def standing_thresholds(self) -> Dict[AccountStanding, int]:
        """Lower bound of each non-GOOD tier. Raises ValueError if misconfigured."""
        raw = self._section("standing").get("thresholds")
        thresholds = dict(DEFAULT_STANDING_THRESHOLDS)
        if isinstance(raw, dict):
            for name, value in raw.items():
                try:
                    thresholds[AccountStanding[str(name).upper()]] = int(value)
                except (KeyError, TypeError, ValueError) as exc:
                    raise ValueError(f"Invalid standing threshold {name!r}={value!r}") from exc
        return validate_thresholds(thresholds)

    @property
    def default_expiration_days(self) -> Dict[ViolationSeverity, int]:
        return _severity_mapping(self._section("expiration").get("default_days"), DEFAULT_EXPIRATION_DAYS, "default_days")

    @property
    def repeat_offense_window_days(self) -> int:
        return int(self._section("expiration").get("repeat_offense_window_days", 90))

    @property
    def max_timeout_days(self) -> int:
        """Platform ceiling for native timeouts."""
        return int(self._section("expiration").get("max_timeout_days", 28))

    # --------------------------
    # Guild presentation
    # --------------------------
    @property
    def audit_channel_id(self) -> Optional[ChannelID]:
        value = self._section("guild").get("audit_channel_id")
        if not value:
            return None
        try:
            return ChannelID(value)
        except ValueError:
            logger.warning("[APP CONFIGURATION] Invalid audit_channel_id %r", value)
            return None

    @property
    def appeal_url(self) -> str:
        return str(self._section("guild").get("appeal_url") or "")

    @property
    def rules_base_url(self) -> str:
        return str(self._section("guild").get("rules_base_url") or "https://example.com").rstrip("/")

    @property
    def standing_roles(self) -> Dict[AccountStanding, int]:
        """Optional role ids mirroring LIMITED, VERY_LIMITED and AT_RISK standing."""
        raw = self._section("guild").get("standing_roles")
        roles: Dict[AccountStanding, int] = {}
        if not isinstance(raw, dict):
            return roles
        for name, role_id in raw.items():
            try:
                standing = AccountStanding[str(name).upper()]
            except KeyError:
                logger.warning("[APP CONFIGURATION] Unknown standing role tier %r", name)
                continue
            if role_id:
                roles[standing] = int(role_id)
        return roles


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
