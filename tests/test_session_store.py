# tests/test_session_store.py
from __future__ import annotations

import pytest

from smart_intake.services.session_store import SessionStore


def test_add_get_remove_lifecycle():
    store = SessionStore()
    marker = object()
    store.add("s1", marker)

    assert "s1" in store
    assert len(store) == 1
    assert store.get("s1") is marker
    assert store.ids() == ["s1"]

    assert store.remove("s1") is True
    assert store.remove("s1") is False
    assert store.get("s1") is None
    assert len(store) == 0


def test_duplicate_id_rejected():
    store = SessionStore()
    store.add("s1", object())
    with pytest.raises(ValueError):
        store.add("s1", object())
