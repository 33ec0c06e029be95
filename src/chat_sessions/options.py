"""
Option registry and per-session option store.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Iterator, Mapping, Optional

from chat_sessions.errors import NotFoundError
from chat_sessions.models.options import OptionGroup, OptionItem, OptionUpdate

logger = logging.getLogger(__name__)


class OptionRegistry:
    """Static catalog of option groups, fixed for the lifetime of the process."""

    def __init__(self, groups: Optional[Iterable[OptionGroup]] = None):
        self._groups: dict[str, OptionGroup] = {}
        for group in groups or []:
            if group.id in self._groups:
                raise ValueError(f"Duplicate option group: {group.id}")
            self._groups[group.id] = group

    def list_groups(self) -> list[OptionGroup]:
        return list(self._groups.values())

    def resolve(self, group_id: str, item_id: str) -> OptionItem:
        group = self._groups.get(group_id)
        if group is None:
            raise NotFoundError(f"Unknown option group: {group_id}", details={"group_id": group_id})
        item = group.find(item_id)
        if item is None:
            raise NotFoundError(
                f"Unknown option '{item_id}' for group {group_id}",
                details={"group_id": group_id, "item_id": item_id},
            )
        return item

    def __bool__(self) -> bool:
        return bool(self._groups)


class OptionsView(Mapping[str, str]):
    """Read-through view of one session's options. Never holds a copy."""

    def __init__(self, store: SessionOptionStore, session_id: str):
        self._store = store
        self._session_id = session_id

    def __getitem__(self, key: str) -> str:
        return self._store.get(self._session_id)[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._store.get(self._session_id))

    def __len__(self) -> int:
        return len(self._store.get(self._session_id))

    def __repr__(self) -> str:
        return f"OptionsView({self._session_id!r}, {self._store.get(self._session_id)!r})"


class SessionOptionStore:
    """Session id → {group id: item id}. Every operation holds the same lock."""

    def __init__(self, registry: OptionRegistry):
        self._registry = registry
        self._values: dict[str, dict[str, str]] = {}
        self._lock = threading.RLock()

    def get(self, session_id: str) -> dict[str, str]:
        with self._lock:
            return dict(self._values.get(session_id, {}))

    def view(self, session_id: str) -> OptionsView:
        return OptionsView(self, session_id)

    def set(self, session_id: str, group_id: str, item_id: str) -> None:
        self._registry.resolve(group_id, item_id)
        with self._lock:
            self._values.setdefault(session_id, {})[group_id] = item_id

    def apply_updates(self, session_id: str, updates: Iterable[OptionUpdate]) -> list[str]:
        """Apply updates in order; later updates to a group win.

        Unknown groups or items are logged and skipped. Returns the ids of the
        groups whose value actually changed.
        """
        with self._lock:
            before = dict(self._values.get(session_id, {}))
            current = dict(before)
            for update in updates:
                if update.value is None:
                    current.pop(update.group_id, None)
                    continue
                try:
                    self._registry.resolve(update.group_id, update.value)
                except NotFoundError as e:
                    logger.warning("Ignoring option update for %s: %s", session_id, e)
                    continue
                current[update.group_id] = update.value
            if current:
                self._values[session_id] = current
            else:
                self._values.pop(session_id, None)
        changed = sorted(k for k in set(before) | set(current) if before.get(k) != current.get(k))
        if changed:
            logger.debug("Options changed for %s: %s", session_id, changed)
        return changed

    def merge(self, session_id: str, values: Mapping[str, str]) -> list[str]:
        return self.apply_updates(
            session_id, [OptionUpdate(group_id=k, value=v) for k, v in values.items()]
        )

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._values.pop(session_id, None)

    def transfer(self, from_session_id: str, to_session_id: str) -> None:
        """Move the whole mapping; the source entry is gone afterwards."""
        with self._lock:
            values = self._values.pop(from_session_id, None)
            if values is not None:
                self._values[to_session_id] = values
            else:
                self._values.pop(to_session_id, None)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._values)
