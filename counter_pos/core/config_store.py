"""JSON configuration stored under the data root with atomic writes."""
from __future__ import annotations

import json
import os
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional

from .paths import layout_for

_LOCK = RLock()
_DEFAULT_CONFIG: Dict[str, Any] = {
    "sqlite_synchronous": "FULL",
    "order_code_prefix": "ORD",
    "order_code_attempts": 5,
    "currency_symbol": "$",
    "cart_autosave": True,
}


def _settings_path(path: Optional[Path]) -> Path:
    return Path(path) if path is not None else layout_for().ensure().settings_file


def _ensure_file_exists(path: Path) -> None:
    if not path.exists():
        atomic_write_json(path, _DEFAULT_CONFIG)


def atomic_write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2, sort_keys=True)
    os.replace(tmp_path, path)


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    target = _settings_path(path)
    with _LOCK:
        _ensure_file_exists(target)
        try:
            with target.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        merged = {**_DEFAULT_CONFIG, **data}
        if merged != data:
            atomic_write_json(target, merged)
        return merged


def save_config(data: Dict[str, Any], path: Optional[Path] = None) -> None:
    with _LOCK:
        merged = {**_DEFAULT_CONFIG, **data}
        atomic_write_json(_settings_path(path), merged)


def get_config_value(key: str, default: Any = None, path: Optional[Path] = None) -> Any:
    config = load_config(path)
    return config.get(key, default)


def get_config_int(key: str, default: int, path: Optional[Path] = None) -> int:
    value = get_config_value(key, default, path)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def set_config_value(key: str, value: Any, path: Optional[Path] = None) -> None:
    config = load_config(path)
    if config.get(key) == value:
        return
    config[key] = value
    save_config(config, path)
