import pytest

from backend.app.errors import ConcurrentOperationError
from backend.app.schemas.tables import TableRef
from backend.app.services.locks import acquire_lock, find_lock, table_lock


T = TableRef("s", "t")


def test_second_lock_on_same_table_is_rejected(db) -> None:
    acquire_lock(db, T, "archive")

    with pytest.raises(ConcurrentOperationError) as exc_info:
        with table_lock(db, T, "restore"):
            pass

    assert exc_info.value.details == {"operation": "archive"}
    assert find_lock(db, T).operation == "archive"


def test_lock_released_when_body_raises(db) -> None:
    with pytest.raises(RuntimeError):
        with table_lock(db, T, "archive"):
            assert find_lock(db, T) is not None
            raise RuntimeError("boom")

    assert find_lock(db, T) is None
    with table_lock(db, TableRef("s", "t"), "restore"):
        pass


def test_locks_are_per_table(db) -> None:
    with table_lock(db, T, "archive"):
        with table_lock(db, TableRef("s", "u"), "archive"):
            assert find_lock(db, TableRef("s", "u")) is not None
