"""Where a counter keeps its database, settings file and autosaved cart.

Everything lives under one root: ``$COUNTER_POS_DATA_ROOT`` when set,
otherwise ``~/.counter_pos``. Tests and multi-counter setups pass their own
root to :class:`StorageLayout` instead.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

ROOT_ENV = "COUNTER_POS_DATA_ROOT"


@dataclass(frozen=True)
class StorageLayout:
    root: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root).expanduser())

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def config_dir(self) -> Path:
        return self.root / "config"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "counter_pos.db"

    @property
    def settings_file(self) -> Path:
        return self.config_dir / "settings.json"

    @property
    def cart_file(self) -> Path:
        return self.data_dir / "cart.json"

    def ensure(self) -> "StorageLayout":
        for path in (self.data_dir, self.config_dir):
            path.mkdir(parents=True, exist_ok=True)
        return self


def default_root() -> Path:
    override = os.getenv(ROOT_ENV)
    if override:
        return Path(override).expanduser().resolve()
    return Path.home() / ".counter_pos"


def layout_for(root: Union[str, Path, None] = None) -> StorageLayout:
    """Layout under *root*, or under :func:`default_root` when it is ``None``."""
    return StorageLayout(Path(root) if root is not None else default_root())
