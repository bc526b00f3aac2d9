"""
Session Storage for ASTER

Async key-value stores holding the session state (standardized files, report
blocks, default context, backend settings):

- MemoryStore: in-process dict
- JsonFileStore: one JSON file per key

Both guarantee read-after-write consistency for a given key and publish a
StoreChange on every write, so callers can react to updates made elsewhere
instead of polling.
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from .config import InferenceConfig
from .documents import StandardizedDocument, document_from_dict
from .report import ReportBlock

logger = logging.getLogger(__name__)

# Keys used by the session
FILES_KEY = "standardized_files"
BLOCKS_KEY = "report_blocks"
CONTEXT_KEY = "aster_context"
PORT_KEY = "ollama_port"
HOST_KEY = "ollama_host"
MODEL_KEY = "ollama_model"
STREAMING_KEY = "use_streaming"

KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


@dataclass(frozen=True)
class StoreChange:
    """Notification of a write. ``key`` is None when the whole store was cleared."""
    key: Optional[str]
    kind: str  # "set", "remove" or "clear"


class KeyValueStore(ABC):
    """Abstract async key-value store with change notification."""

    def __init__(self):
        self._subscribers: Set[asyncio.Queue] = set()

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Value stored under key, or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key (no-op if absent)."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Delete every key."""
        pass

    @abstractmethod
    async def size_estimate(self) -> int:
        """Approximate storage footprint in bytes."""
        pass

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving a StoreChange for every subsequent write."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def _notify(self, key: Optional[str], kind: str) -> None:
        change = StoreChange(key=key, kind=kind)
        for queue in self._subscribers:
            queue.put_nowait(change)


class MemoryStore(KeyValueStore):
    """In-process store. Values are copied through JSON, as a real store would."""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)
        self._notify(key, "set")

    async def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._notify(key, "remove")

    async def clear(self) -> None:
        self._data.clear()
        self._notify(None, "clear")

    async def size_estimate(self) -> int:
        return sum(len(k.encode("utf-8")) + len(v.encode("utf-8")) for k, v in self._data.items())


class JsonFileStore(KeyValueStore):
    """
    Disk-based store using JSON files.

    Each key is stored as a separate file. File I/O runs in a worker thread;
    a lock serializes operations so a read always sees the latest write.
    """

    def __init__(self, directory: Union[str, Path]):
        """
        Initialize the store.

        Args:
            directory: Directory to store the files in (created if missing)
        """
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _key_to_path(self, key: str) -> Path:
        if not KEY_RE.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.directory / f"{key}.json"

    def _read(self, path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)["value"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load store entry {path.name}: {e}")
            return None

    def _write(self, path: Path, key: str, value: Any) -> None:
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"key": key, "value": value}, f, ensure_ascii=False)
        tmp.replace(path)

    async def get(self, key: str) -> Optional[Any]:
        path = self._key_to_path(key)
        async with self._lock:
            return await asyncio.to_thread(self._read, path)

    async def set(self, key: str, value: Any) -> None:
        path = self._key_to_path(key)
        async with self._lock:
            await asyncio.to_thread(self._write, path, key, value)
        self._notify(key, "set")

    async def remove(self, key: str) -> None:
        path = self._key_to_path(key)
        async with self._lock:
            existed = path.exists()
            if existed:
                await asyncio.to_thread(path.unlink)
        if existed:
            self._notify(key, "remove")

    async def clear(self) -> None:
        async with self._lock:
            for path in self.directory.glob("*.json"):
                await asyncio.to_thread(path.unlink)
        self._notify(None, "clear")

    async def size_estimate(self) -> int:
        async with self._lock:
            return sum(path.stat().st_size for path in self.directory.glob("*.json"))


# =============================================================================
# Session helpers
# =============================================================================

async def save_documents(store: KeyValueStore, documents: List[StandardizedDocument]) -> None:
    await store.set(FILES_KEY, [doc.to_dict() for doc in documents])


async def load_documents(store: KeyValueStore) -> List[StandardizedDocument]:
    return [document_from_dict(item) for item in (await store.get(FILES_KEY) or [])]


async def save_blocks(store: KeyValueStore, blocks: List[ReportBlock]) -> None:
    await store.set(BLOCKS_KEY, [block.to_dict() for block in blocks])


async def load_blocks(store: KeyValueStore) -> List[ReportBlock]:
    return [ReportBlock.from_dict(item) for item in (await store.get(BLOCKS_KEY) or [])]


async def load_default_context(store: KeyValueStore, fallback: str = "") -> str:
    value = await store.get(CONTEXT_KEY)
    return value if isinstance(value, str) else fallback


async def load_inference_config(store: KeyValueStore, base: Optional[InferenceConfig] = None) -> InferenceConfig:
    """
    Build the session's InferenceConfig once, at session start.

    Settings saved in the store (host, port, model, streaming flag) override
    ``base``. Malformed stored values are ignored with a warning.
    """
    config = replace(base) if base is not None else InferenceConfig()

    host = await store.get(HOST_KEY)
    if isinstance(host, str) and host.strip():
        config.host = host.strip()

    port = await store.get(PORT_KEY)
    if port is not None:
        try:
            port = int(port)
            if not 1 <= port <= 65535:
                raise ValueError(port)
            config.port = port
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid stored port: {port!r}")

    model = await store.get(MODEL_KEY)
    if isinstance(model, str) and model.strip():
        config.model = model.strip()

    streaming = await store.get(STREAMING_KEY)
    if isinstance(streaming, bool):
        config.streaming = streaming
    elif isinstance(streaming, str):
        config.streaming = streaming.lower() in ("true", "1", "yes")

    return config


async def save_inference_config(store: KeyValueStore, config: InferenceConfig) -> None:
    await store.set(HOST_KEY, config.host)
    await store.set(PORT_KEY, config.port)
    await store.set(MODEL_KEY, config.model)
    await store.set(STREAMING_KEY, config.streaming)
