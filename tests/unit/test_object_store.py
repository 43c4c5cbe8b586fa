import pytest

from backend.app.errors import TransportError


def test_put_get_and_list(store) -> None:
    store.put_text("bucket", "p/ddl", "CREATE TABLE")
    store.put_text("bucket", "p/manifest", "{}")
    store.put_text("bucket", "q/ddl", "other")

    assert store.exists("bucket", "p/ddl")
    assert not store.exists("bucket", "p/missing")
    assert store.get_text("bucket", "p/ddl") == "CREATE TABLE"
    assert list(store.list("bucket", "p/")) == ["p/ddl", "p/manifest"]


def test_delete_prefix_keeps_nested_prefix(store) -> None:
    store.put_text("bucket", "archive/old_ddl", "x")
    store.put_text("bucket", "archive/new/ddl", "y")

    deleted = store.delete_prefix("bucket", "archive/", keep_prefix="archive/new/")

    assert deleted == 1
    assert list(store.list("bucket", "archive/")) == ["archive/new/ddl"]


def test_keys_cannot_escape_the_bucket(store) -> None:
    with pytest.raises(TransportError):
        store.put_text("bucket", "../../etc/passwd", "x")


def test_reading_missing_key_is_transport_error(store) -> None:
    with pytest.raises(TransportError):
        store.get("bucket", "nope")
