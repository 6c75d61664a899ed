"""Simple JSON-based config store."""

from __future__ import annotations

import json
import os
from pathlib import Path

LANGUAGES = ("en-US", "hi-IN")
LISTENING_MODELS = ("auto", "continuous", "single_shot")


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "handsfree_assistant" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", "")) or os.getenv("DASHSCOPE_API_KEY", "")

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("hotkey", "Key.f9"))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_language(self) -> str:
        value = str(self._read_all().get("language", "en-US"))
        return value if value in LANGUAGES else "en-US"

    def set_language(self, language: str) -> None:
        if language not in LANGUAGES:
            raise ValueError(f"unsupported language: {language}")
        self._set("language", language)

    def get_listening_model(self) -> str:
        value = str(self._read_all().get("listening_model", "auto"))
        return value if value in LISTENING_MODELS else "auto"

    def set_listening_model(self, model: str) -> None:
        if model not in LISTENING_MODELS:
            raise ValueError(f"unsupported listening model: {model}")
        self._set("listening_model", model)

    def get_log_level(self) -> str:
        return str(self._read_all().get("log_level", "INFO")).upper()

    def _set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
