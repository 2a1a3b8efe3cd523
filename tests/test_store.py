import json
import os
import sqlite3

from receipt_automation.domain.models import StoredReceiptItem
from receipt_automation.pipeline.schema import parse_receipt
from receipt_automation.store import ReceiptStore

from conftest import SAMPLE_RECEIPT


def _item(item_id, created_at, **kwargs):
    return StoredReceiptItem(
        id=item_id,
        created_at=created_at,
        file_name=f"{item_id}.jpg",
        mime_type="image/jpeg",
        size=4,
        **kwargs,
    )


def test_default_location_under_project_root(tmp_path):
    (tmp_path / "README.md").write_text("marker", encoding="utf-8")
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)
    store = ReceiptStore(root_dir=str(nested))
    assert store.db_path == os.path.join(str(tmp_path), "var", "receipts", "receipts.sqlite3")
    assert os.path.isfile(store.db_path)


def test_put_and_get_roundtrip(store):
    record = parse_receipt(SAMPLE_RECEIPT)
    item = _item("a", 1000).mark_done(record)
    store.put(item)
    assert store.get("a") == item
    assert store.get("missing") is None


def test_put_updates_existing_item(store):
    item = _item("a", 1000)
    store.put(item)
    store.put(item.mark_error("boom", ("detail 1", "detail 2")))
    loaded = store.get("a")
    assert loaded.status == "error"
    assert loaded.error == "boom"
    assert loaded.error_details == ("detail 1", "detail 2")
    assert len(store.list()) == 1


def test_list_is_newest_first(store):
    store.put(_item("old", 1000))
    store.put(_item("new", 3000))
    store.put(_item("mid", 2000))
    assert [it.id for it in store.list()] == ["new", "mid", "old"]


def test_images_roundtrip_and_delete(store):
    store.put(_item("a", 1000))
    store.put_image("a", b"\x89PNG...")
    assert store.get_image("a") == b"\x89PNG..."
    assert store.get_image("b") is None

    assert store.delete("a") is True
    assert store.get("a") is None
    assert store.get_image("a") is None
    assert store.delete("a") is False


def test_stored_receipt_that_no_longer_validates_becomes_an_error(store):
    store.put(_item("a", 1000))
    with sqlite3.connect(store.db_path) as conn:
        conn.execute(
            "UPDATE items SET status='done', receipt=? WHERE id='a'",
            (json.dumps({"unexpected": True}),),
        )
    loaded = store.get("a")
    assert loaded.status == "error"
    assert loaded.receipt is None
    assert loaded.exportable is False
