"""JSON-backed store for the user's saved personal items."""

from __future__ import annotations

import base64
import json
import time
from dataclasses import asdict
from pathlib import Path

from models import Frame, PersonalItem


class JsonItemStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "handsfree_assistant" / "items.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def list_items(self) -> list[PersonalItem]:
        return [
            PersonalItem(
                name=str(entry["name"]),
                image_b64=str(entry.get("image_b64", "")),
                created_ms=int(entry.get("created_ms", 0) or 0),
            )
            for entry in self._read_all()
        ]

    def save_item(self, name: str, frame: Frame) -> PersonalItem:
        item = PersonalItem(
            name=name,
            image_b64=base64.b64encode(frame.jpeg_bytes).decode("ascii"),
            created_ms=int(time.time() * 1000),
        )
        # Saving under an existing name replaces it.
        items = [i for i in self.list_items() if i.name.lower() != name.lower()]
        items.append(item)
        self._write_all(items)
        return item

    def delete_item(self, name: str) -> list[PersonalItem]:
        items = [i for i in self.list_items() if i.name.lower() != name.lower()]
        self._write_all(items)
        return items

    def _read_all(self) -> list[dict]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return []
        if not isinstance(data, list):
            return []
        return [entry for entry in data if isinstance(entry, dict) and entry.get("name")]

    def _write_all(self, items: list[PersonalItem]) -> None:
        payload = [asdict(item) for item in items]
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
