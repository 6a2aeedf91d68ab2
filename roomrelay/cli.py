from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import ConfigManager, RelayRuntimeConfig
from .logging_config import configure_logging
from .paths import default_config_path, default_identity_path, ensure_private_dir
from .service import RelayService


def _write_default_config(config_path: str, identity_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    defaults = RelayRuntimeConfig()

    content = f"""# roomrelay configuration (TOML)
#
# This file was created on first run.
# Edit it, then start roomrelayd again.

[relay]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where roomrelayd stores its persistent identity (Reticulum Identity file).
identity_path = {identity_path!r}

# Destination name to host the relay on.
dest_name = {defaults.dest_name!r}

# Announcing (Reticulum destination announces)
#
# announce_on_start: send a single announce right after startup.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

# Name advertised in announces.
relay_name = {defaults.relay_name!r}

# Wire encoding of frames: "json" or "cbor".
codec = {defaults.codec!r}

# Limits (0 disables a limit).
# Requests that exceed them are dropped without a reply.
identity_max_chars = {defaults.identity_max_chars}
max_room_name_len = {defaults.max_room_name_len}
max_rooms_per_connection = {defaults.max_rooms_per_connection}

# Frames larger than the link MTU (for example presence lists of busy rooms)
# are sent as an RNS.Resource when enabled.
enable_resource_transfer = true
max_resource_bytes = {defaults.max_resource_bytes}

# Log a statistics summary every N seconds (0 disables).
stats_log_interval_s = 0.0

[logging]

# Log level for roomrelay itself.
level = "INFO"

# Log level for Reticulum/RNS Python logging (if used by your install).
rns_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = {defaults.log_format!r}
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str, identity_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path)
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except OSError:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="roomrelayd", description="Run a room-based message relay"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to relay identity file (created on first run)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: roomrelay.hub)"
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
    p.add_argument("--relay-name", default=None, help="Relay name in announces")
    p.add_argument(
        "--codec", choices=("json", "cbor"), default=None, help="Wire encoding"
    )
    p.add_argument(
        "--max-rooms", type=int, default=None, help="Max rooms per connection"
    )
    p.add_argument(
        "--max-room-name-len", type=int, default=None, help="Max room name length"
    )
    p.add_argument(
        "--stats-interval",
        type=float,
        default=None,
        help="Log statistics every N seconds (0 disables)",
    )
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


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    cfg = RelayRuntimeConfig(configdir=args.configdir, identity_path=str(args.identity))
    if args.config and os.path.exists(args.config):
        cfg = ConfigManager().load(cfg, str(args.config))

    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir)
    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)
    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))
    if args.relay_name is not None:
        cfg = replace(cfg, relay_name=args.relay_name)
    if args.codec is not None:
        cfg = replace(cfg, codec=args.codec)
    if args.max_rooms is not None:
        cfg = replace(cfg, max_rooms_per_connection=int(args.max_rooms))
    if args.max_room_name_len is not None:
        cfg = replace(cfg, max_room_name_len=int(args.max_room_name_len))
    if args.stats_interval is not None:
        cfg = replace(cfg, stats_log_interval_s=float(args.stats_interval))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) or None)
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)

    if _ensure_first_run_files(config_path, identity_path):
        print(
            "Created default roomrelay files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run roomrelayd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
