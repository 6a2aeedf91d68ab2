from __future__ import annotations

import os
from pathlib import Path


def default_relay_dir() -> Path:
    override = os.environ.get("ROOMRELAY_HOME")
    if override:
        return Path(override)
    return Path.home() / ".roomrelay"


def default_config_path() -> Path:
    return default_relay_dir() / "roomrelay.toml"


def default_identity_path() -> Path:
    return default_relay_dir() / "relay_identity"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except OSError:
        pass
