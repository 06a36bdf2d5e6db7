"""Browser-local override map (legacy map mode) and its cross-session sync.

Overrides are display-only patches layered over the canonical lots. They are
kept in a key-value store shared by every open session, and each write posts
a ``"sync"`` message so sibling sessions reload the map. Concurrent writers
are not merged: the last store write wins.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Mapping, Protocol

from lotemap.lotes.normalization import clean_number, normalize_status, optional_text
from lotemap.lotes.storage import Lote

logger = logging.getLogger(__name__)

OVERRIDES_KEY = "arenas.lotes.overrides.v1"
HISTORY_KEY = "arenas.lotes.history.v1"
SYNC_CHANNEL = "arenas-lotes-sync"
SYNC_MESSAGE = "sync"
HISTORY_LIMIT = 200
OVERRIDE_FIELDS = ("price", "condicion", "cliente")

Listener = Callable[[str], None]


class LocalStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def subscribe(self, listener: Listener) -> Callable[[], None]: ...


class MemoryLocalStore:
    """In-process store shared by several sessions, like one browser profile."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            listeners = list(self._listeners)
        for listener in listeners:
            listener(key)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe


class JsonFileLocalStore(MemoryLocalStore):
    """Durable variant: every write is flushed to a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        initial: dict[str, str] = {}
        if self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.warning("Almacen local ilegible, se reinicia: %s", self.path)
            else:
                if isinstance(loaded, dict):
                    initial = {str(k): str(v) for k, v in loaded.items()}
        super().__init__(initial)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            snapshot = dict(self._data)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(snapshot, ensure_ascii=False), encoding="utf-8")
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(key)


class SyncChannel:
    def __init__(self, hub: "SyncHub", name: str) -> None:
        self.hub = hub
        self.name = name
        self.on_message: Callable[[object], None] | None = None
        self.closed = False

    def post(self, message: object) -> None:
        if self.closed:
            raise RuntimeError("Canal cerrado")
        self.hub.deliver(self, message)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.hub.detach(self)


class SyncHub:
    """Publish/subscribe fan-out between sessions; senders do not hear themselves."""

    def __init__(self) -> None:
        self._channels: dict[str, list[SyncChannel]] = {}
        self._lock = threading.Lock()

    def channel(self, name: str = SYNC_CHANNEL) -> SyncChannel:
        channel = SyncChannel(self, name)
        with self._lock:
            self._channels.setdefault(name, []).append(channel)
        return channel

    def deliver(self, sender: SyncChannel, message: object) -> None:
        with self._lock:
            targets = [c for c in self._channels.get(sender.name, []) if c is not sender]
        for target in targets:
            if target.on_message is not None:
                target.on_message(message)

    def detach(self, channel: SyncChannel) -> None:
        with self._lock:
            peers = self._channels.get(channel.name, [])
            if channel in peers:
                peers.remove(channel)


def clean_override(patch: Mapping[str, object]) -> dict[str, object]:
    cleaned: dict[str, object] = {}
    if "price" in patch:
        cleaned["price"] = clean_number(patch["price"])
    if "condicion" in patch:
        cleaned["condicion"] = normalize_status(patch["condicion"])
    if "cliente" in patch:
        cleaned["cliente"] = optional_text(patch["cliente"])
    return cleaned


def apply_overrides(
    canonical: Iterable[Lote],
    overrides: Mapping[str, Mapping[str, object]],
) -> list[Lote]:
    merged: list[Lote] = []
    for lote in canonical:
        patch = overrides.get(lote.id)
        if not patch:
            merged.append(lote)
            continue
        fields = {key: patch[key] for key in OVERRIDE_FIELDS if key in patch}
        merged.append(lote.with_fields(**fields))
    return merged


def load_overrides(store: LocalStore) -> dict[str, dict[str, object]]:
    raw = store.get(OVERRIDES_KEY)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Overrides corruptos en %s, se ignoran", OVERRIDES_KEY)
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): clean_override(v) for k, v in data.items() if isinstance(v, dict)}


def load_history(store: LocalStore) -> list[str]:
    raw = store.get(HISTORY_KEY)
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        return []
    return [str(line) for line in data] if isinstance(data, list) else []


class OverrideSession:
    """One open map session (a browser tab in the original UI)."""

    def __init__(
        self,
        store: LocalStore,
        hub: SyncHub,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.overrides = load_overrides(store)
        self._channel = hub.channel(SYNC_CHANNEL)
        self._channel.on_message = lambda _message: self.reload()
        self._unsubscribe = store.subscribe(self._on_store_change)

    def reload(self) -> None:
        self.overrides = load_overrides(self.store)

    def _on_store_change(self, key: str) -> None:
        if key == OVERRIDES_KEY:
            self.reload()

    def merged(self, canonical: Iterable[Lote]) -> list[Lote]:
        return apply_overrides(canonical, self.overrides)

    def update_override(self, lote_id: str, patch: Mapping[str, object]) -> dict[str, object]:
        cleaned = clean_override(patch)
        current = dict(self.overrides)
        current[lote_id] = {**current.get(lote_id, {}), **cleaned}
        self._persist(current)
        self._append_history(f"{lote_id} => {json.dumps(cleaned, ensure_ascii=False)}")
        self._channel.post(SYNC_MESSAGE)
        return current[lote_id]

    def clear_override(self, lote_id: str) -> bool:
        if lote_id not in self.overrides:
            return False
        current = {k: v for k, v in self.overrides.items() if k != lote_id}
        self._persist(current)
        self._append_history(f"{lote_id} => reset")
        self._channel.post(SYNC_MESSAGE)
        return True

    def history(self) -> list[str]:
        return load_history(self.store)

    def close(self) -> None:
        self._unsubscribe()
        self._channel.close()

    def _persist(self, overrides: dict[str, dict[str, object]]) -> None:
        self.overrides = overrides
        self.store.set(OVERRIDES_KEY, json.dumps(overrides, ensure_ascii=False))

    def _append_history(self, entry: str) -> None:
        line = f"{self.clock().isoformat()} | {entry}"
        history = [line, *load_history(self.store)]
        self.store.set(HISTORY_KEY, json.dumps(history[:HISTORY_LIMIT], ensure_ascii=False))
