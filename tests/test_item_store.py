from __future__ import annotations

import base64
from pathlib import Path

from item_store import JsonItemStore
from models import Frame


def test_save_list_and_delete(tmp_path: Path) -> None:
    path = tmp_path / "items.json"
    store = JsonItemStore(path=path)
    assert store.list_items() == []

    saved = store.save_item("Keys", Frame(jpeg_bytes=b"\xff\xd8keys"))
    store.save_item("Wallet", Frame(jpeg_bytes=b"\xff\xd8wallet"))

    assert base64.b64decode(saved.image_b64) == b"\xff\xd8keys"
    assert saved.created_ms > 0

    reloaded = JsonItemStore(path=path)
    assert [item.name for item in reloaded.list_items()] == ["Keys", "Wallet"]

    remaining = reloaded.delete_item("keys")
    assert [item.name for item in remaining] == ["Wallet"]
    assert [item.name for item in JsonItemStore(path=path).list_items()] == ["Wallet"]


def test_saving_existing_name_replaces_it(tmp_path: Path) -> None:
    store = JsonItemStore(path=tmp_path / "items.json")

    store.save_item("Mug", Frame(jpeg_bytes=b"old"))
    store.save_item("mug", Frame(jpeg_bytes=b"new"))

    items = store.list_items()
    assert len(items) == 1
    assert base64.b64decode(items[0].image_b64) == b"new"


def test_corrupt_file_reads_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "items.json"
    path.write_text('{"not": "a list"}', encoding="utf-8")

    assert JsonItemStore(path=path).list_items() == []

    path.write_text('[{"name": "Keys"}, {"image_b64": "x"}, "junk"]', encoding="utf-8")
    assert [item.name for item in JsonItemStore(path=path).list_items()] == ["Keys"]


def test_unknown_keys_in_saved_items_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "items.json"
    path.write_text(
        '[{"name": "keys", "image_b64": "", "created_ms": 5, "tag": "x"}]', encoding="utf-8"
    )

    items = JsonItemStore(path=path).list_items()

    assert [(item.name, item.created_ms) for item in items] == [("keys", 5)]
