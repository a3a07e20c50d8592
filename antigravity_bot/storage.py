import json
import os
import threading
from typing import Any, Dict, List, Protocol

from .config import STATE_FILE
from .logging_config import setup_logger
from .models import AIDecisionRecord

logger = setup_logger("storage")

BALANCE_KEY = "trade_balance"
POSITIONS_KEY = "trade_positions"
HISTORY_KEY = "trade_history"
DECISIONS_KEY = "ai_decisions"
MAX_DECISIONS = 500


class KeyValueStore(Protocol):
    def load(self, key: str, default: Any = None) -> Any: ...

    def save(self, key: str, value: Any) -> None: ...

    def clear(self) -> None: ...


class MemoryStore:
    def __init__(self, initial: Dict[str, Any] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def load(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def save(self, key: str, value: Any) -> None:
        self._data[key] = value

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore:
    """All keys in one JSON document, rewritten on every save.

    Read/write errors are logged and swallowed: the caller's in-memory state
    stays authoritative and the next save retries.
    """

    def __init__(self, path: str = STATE_FILE):
        self.path = path
        self._lock = threading.Lock()
        self._data = self._read()

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error reading {self.path}: {e}")
            return {}

    def _write(self) -> None:
        tmp = f"{self.path}.tmp"
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(self._data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except (OSError, TypeError) as e:
            logger.error(f"Error writing {self.path}: {e}")

    def load(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._write()

    def clear(self) -> None:
        with self._lock:
            self._data = {}
            self._write()


def append_decision(store: KeyValueStore, record: AIDecisionRecord) -> None:
    history: List[Dict[str, Any]] = store.load(DECISIONS_KEY, []) or []
    history.append(record.model_dump(mode="json"))
    store.save(DECISIONS_KEY, history[-MAX_DECISIONS:])
