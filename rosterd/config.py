from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import DEFAULT_MAX_USER_ID, DEFAULT_MIN_USER_ID


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "rosterd.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    hub_name: str = "rosterd"
    min_user_id: int = DEFAULT_MIN_USER_ID
    max_user_id: int = DEFAULT_MAX_USER_ID
    notify_enabled: bool = True
    notify_host: str = "127.0.0.1"
    notify_port: int = 3000
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = "%Y-%m-%d %H:%M:%S"

    def __post_init__(self) -> None:
        if int(self.min_user_id) < 0:
            raise ValueError("min_user_id must not be negative")
        if int(self.min_user_id) > int(self.max_user_id):
            raise ValueError("min_user_id must not exceed max_user_id")


_TABLE_KEYS: dict[str, dict[str, str]] = {
    "logging": {
        "level": "log_level",
        "rns_level": "log_rns_level",
        "console": "log_console",
        "file": "log_file",
        "format": "log_format",
        "datefmt": "log_datefmt",
    },
    "notify": {
        "enabled": "notify_enabled",
        "host": "notify_host",
        "port": "notify_port",
    },
}

_OPTIONAL_STR_KEYS = ("configdir", "identity_path", "log_file", "log_datefmt")


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: HubRuntimeConfig, data: dict) -> HubRuntimeConfig:
    """Overlay parsed TOML data onto a config. Unknown keys are ignored."""
    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    for table, keys in _TABLE_KEYS.items():
        section = data.get(table)
        if isinstance(section, dict):
            mapped = {field: section[key] for key, field in keys.items() if key in section}
            data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _OPTIONAL_STR_KEYS:
        if key in updates and updates[key] == "":
            updates[key] = None

    for key in ("min_user_id", "max_user_id", "notify_port"):
        if key in updates:
            updates[key] = int(updates[key])
    if "announce_period_s" in updates:
        updates["announce_period_s"] = float(updates["announce_period_s"])

    return replace(base, **updates) if updates else base


def load_config_file(base: HubRuntimeConfig, path: str) -> HubRuntimeConfig:
    return apply_config_data(base, load_toml(path))
