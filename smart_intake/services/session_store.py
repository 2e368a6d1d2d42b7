# smart_intake/services/session_store.py
from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .pipeline import SmartIntakePipeline


class SessionStore:
    """
    In-flight pipelines keyed by session id. Entries are added when a run is
    created and removed when it reaches a terminal status.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, "SmartIntakePipeline"] = {}

    def add(self, session_id: str, pipeline: "SmartIntakePipeline") -> None:
        with self._lock:
            if session_id in self._items:
                raise ValueError(f"session {session_id} already registered")
            self._items[session_id] = pipeline

    def get(self, session_id: str) -> Optional["SmartIntakePipeline"]:
        with self._lock:
            return self._items.get(session_id)

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._items.pop(session_id, None) is not None

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


SESSION_STORE = SessionStore()
