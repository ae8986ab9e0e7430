from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import HubRuntimeConfig, load_config_file
from .logging_config import configure_logging
from .service import HubService

CONFIG_NAME = "rosterd.toml"
IDENTITY_NAME = "hub_identity"


def _home_dir() -> Path:
    override = os.environ.get("ROSTERD_HOME")
    if override:
        return Path(os.path.expanduser(override))
    return Path.home() / ".rosterd"


def _identity_path_for(args: argparse.Namespace) -> str:
    """An explicit --identity wins; otherwise the identity sits beside the config."""
    if args.identity:
        return str(args.identity)
    return str(Path(str(args.config)).parent / IDENTITY_NAME)


def _ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, 0o700)
    except OSError:
        pass


def _write_default_config(config_path: str, identity_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        _ensure_private_dir(Path(cfg_dir))

    content = f"""# rosterd configuration (TOML)
#
# This file was created on first run.
# Edit it, then start rosterd again.

[hub]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where rosterd stores its persistent identity (Reticulum Identity file).
identity_path = {identity_path!r}

# Destination name to host the hub on.
dest_name = "rosterd.hub"

# announce_on_start: send a single announce right after startup.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

# Hub name reported in WELCOME.
hub_name = "rosterd"

# Accepted user_id claims (inclusive).
min_user_id = 1
max_user_id = 10

[notify]

# HTTP endpoint for system broadcasts: GET /notify?msg=...
enabled = true
host = "127.0.0.1"
port = 3000

[logging]

# Python logging level for rosterd: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = "INFO"

# Level applied to the "RNS" logger.
rns_level = "WARNING"

# Log to stderr.
console = true

# Optional log file path (empty disables file logging).
file = ""

format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = "%Y-%m-%d %H:%M:%S"
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)
    try:
        os.chmod(config_path, 0o600)
    except Exception:
        pass


def _ensure_first_run_files(config_path: str, identity_path: str) -> bool:
    created_any = False

    if config_path and not os.path.exists(config_path):
        _write_default_config(config_path, identity_path)
        created_any = True

    if identity_path and not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            _ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except Exception:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rosterd", description="Run a presence-aware messaging relay hub"
    )

    p.add_argument(
        "--config",
        default=str(_home_dir() / CONFIG_NAME),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=None,
        help="Path to hub identity file (default: beside the config; created on first run)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: rosterd.hub)"
    )

    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Disable announce on start (does not affect periodic announce)",
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Periodic announce interval seconds (0 disables)",
    )

    p.add_argument("--hub-name", default=None, help="Hub name in WELCOME")
    p.add_argument("--min-user-id", type=int, default=None, help="Lowest accepted user_id")
    p.add_argument("--max-user-id", type=int, default=None, help="Highest accepted user_id")

    p.add_argument(
        "--no-notify", action="store_true", help="Do not start the notify HTTP endpoint"
    )
    p.add_argument("--notify-host", default=None, help="Notify HTTP bind host")
    p.add_argument("--notify-port", type=int, default=None, help="Notify HTTP port")

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> HubRuntimeConfig:
    """Defaults, then the config file, then command line flags."""
    config_path = str(args.config) if args.config else None

    cfg = HubRuntimeConfig(configdir=args.configdir, identity_path=_identity_path_for(args))
    cfg = replace(cfg, config_path=config_path)

    if config_path and os.path.exists(config_path):
        cfg = load_config_file(cfg, config_path)

    updates: dict[str, object] = {}
    if args.configdir is not None:
        updates["configdir"] = args.configdir
    if args.identity:
        updates["identity_path"] = str(args.identity)
    if args.dest_name is not None:
        updates["dest_name"] = args.dest_name
    if args.no_announce:
        updates["announce_on_start"] = False
    if args.announce_period is not None:
        updates["announce_period_s"] = float(args.announce_period)
    if args.hub_name is not None:
        updates["hub_name"] = args.hub_name
    if args.min_user_id is not None:
        updates["min_user_id"] = int(args.min_user_id)
    if args.max_user_id is not None:
        updates["max_user_id"] = int(args.max_user_id)
    if args.no_notify:
        updates["notify_enabled"] = False
    if args.notify_host is not None:
        updates["notify_host"] = args.notify_host
    if args.notify_port is not None:
        updates["notify_port"] = int(args.notify_port)
    if args.log_level is not None:
        updates["log_level"] = str(args.log_level)
    if args.log_file is not None:
        updates["log_file"] = str(args.log_file) if str(args.log_file) else None

    return replace(cfg, **updates) if updates else cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = _identity_path_for(args)

    if _ensure_first_run_files(config_path, identity_path):
        print(
            "Created default rosterd files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run rosterd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    try:
        cfg = build_config(args)
    except ValueError as e:
        print(f"rosterd: invalid configuration: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = HubService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
