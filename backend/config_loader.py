from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml

from focal.config import FocalSettings

API_KEY_ENV = "GEMINI_API_KEY"


def load_raw(path: str) -> Dict[str, Any]:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return {}
    with cfg_path.open("r") as fh:
        return yaml.safe_load(fh) or {}


def load_settings(path: str) -> FocalSettings:
    data = load_raw(path)
    settings = FocalSettings.from_dict(data)
    if not settings.messages.api_key:
        settings.messages.api_key = os.environ.get(API_KEY_ENV, "")
    return settings


def persist_settings(path: str, payload: Dict[str, Any]) -> None:
    cfg_path = Path(path)
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    with cfg_path.open("w") as fh:
        yaml.safe_dump(payload, fh)
