from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, replace

from .codec import check_codec


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "roomrelay.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    relay_name: str = "roomrelay"
    codec: str = "json"
    identity_max_chars: int = 32
    max_room_name_len: int = 64
    max_rooms_per_connection: int = 32
    enable_resource_transfer: bool = True
    max_resource_bytes: int = 256 * 1024  # 256 KiB default
    stats_log_interval_s: float = 0.0
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


_LOGGING_KEYS = {
    "level": "log_level",
    "rns_level": "log_rns_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

_EMPTY_IS_NONE = ("configdir", "log_file", "log_datefmt")


class ConfigManager:
    """Loads relay configuration from TOML files."""

    def load_toml(self, path: str) -> dict:
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return data if isinstance(data, dict) else {}

    def apply_config_data(
        self, base: RelayRuntimeConfig, data: dict
    ) -> RelayRuntimeConfig:
        """Overlay a parsed config document on `base`.

        Keys may sit at the top level or in the ``[relay]`` table; the
        ``[logging]`` table uses short names (``level``, ``file``, ...).
        Unknown keys are ignored.
        """
        relay = data.get("relay") if isinstance(data, dict) else None
        if isinstance(relay, dict):
            data = {**data, **relay}

        log_table = data.get("logging") if isinstance(data, dict) else None
        if isinstance(log_table, dict):
            mapped = {
                field: log_table.get(key)
                for key, field in _LOGGING_KEYS.items()
                if key in log_table
            }
            data = {**data, **mapped}

        allowed = set(asdict(base).keys())
        # This identifies where to reload from; do not let the file override it.
        allowed.discard("config_path")
        updates = {k: v for k, v in data.items() if k in allowed}

        if "announce" in data and "announce_on_start" not in updates:
            updates["announce_on_start"] = bool(data["announce"])
        for key in _EMPTY_IS_NONE:
            if key in updates and updates[key] == "":
                updates[key] = None
        if "codec" in updates:
            updates["codec"] = check_codec(updates["codec"])

        return replace(base, **updates) if updates else base

    def load(self, base: RelayRuntimeConfig, path: str) -> RelayRuntimeConfig:
        cfg = self.apply_config_data(base, self.load_toml(path))
        return replace(cfg, config_path=path)
