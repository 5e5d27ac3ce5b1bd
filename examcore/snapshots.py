"""
Local progress snapshots for resuming an attempt.
Two slots per (student, exam): the attempt shape (rarely written) and the answer map
(written on every answer/review change). A third slot keeps the submitted result for review.
"""
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MemorySnapshotStore:
    """Key-value snapshot store held in memory."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Dict[str, Any]):
        self._data[key] = json.dumps(value, default=str)

    def delete(self, key: str):
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class JsonFileSnapshotStore:
    """One JSON file per key under a directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / (re.sub(r"[^A-Za-z0-9_.-]", "_", key) + ".json")

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Unreadable snapshot {path.name}: {e}")
            return None

    def set(self, key: str, value: Dict[str, Any]):
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(value, default=str, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def delete(self, key: str):
        self._path(key).unlink(missing_ok=True)


class AttemptSnapshots:
    """Named slots for one student's attempt at one exam."""

    def __init__(self, store, student_id: Optional[str], exam_id: str):
        self.store = store
        owner = student_id or "anonymous"
        self.shape_key = f"exam_static_{owner}_{exam_id}"
        self.progress_key = f"exam_answers_prog_{owner}_{exam_id}"
        self.result_key = f"exam_answers_{owner}_{exam_id}"

    def save_shape(self, shape: Dict[str, Any]):
        self.store.set(self.shape_key, shape)

    def load_shape(self) -> Optional[Dict[str, Any]]:
        return self.store.get(self.shape_key)

    def save_progress(self, answers: Dict[str, int], marked_for_review):
        self.store.set(self.progress_key, {
            "answers": answers,
            "marked_for_review": sorted(marked_for_review),
        })

    def load_progress(self) -> Optional[Dict[str, Any]]:
        return self.store.get(self.progress_key)

    def clear_progress(self):
        self.store.delete(self.shape_key)
        self.store.delete(self.progress_key)

    def save_result(self, result: Dict[str, Any]):
        self.store.set(self.result_key, result)

    def load_result(self) -> Optional[Dict[str, Any]]:
        return self.store.get(self.result_key)
