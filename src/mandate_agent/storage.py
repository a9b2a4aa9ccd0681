"""Local data directory helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional


HOME_ENV = "MANDATE_AGENT_HOME"


def default_data_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    override = env.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".mandate-agent"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)
