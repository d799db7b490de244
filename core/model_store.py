"""
model_store.py
---------------
Durable storage for the categorizer's LearnedModel.

One JSON record per installation. Saves are best-effort: the snapshot is
taken synchronously, then written on a single background worker so a slow
or failing disk never blocks or fails a training call. Loads never raise;
a missing or unreadable file yields an empty, untrained model.
"""

import json
import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Dict, List

from core.learned_model import LearnedModel

logger = logging.getLogger(__name__)


class ModelStore:
    """
    JSON file store for a LearnedModel.

    Usage:
        store = ModelStore("~/.gig_intelligence/model.json")
        model = store.load()
        ...
        store.save(model)
        store.close()
    """

    def __init__(self, path: str | os.PathLike, background: bool = True):
        """
        Args:
            path: Target JSON file. `~` is expanded.
            background: Write on a worker thread. False writes inline
                (still never raises).
        """
        self.path = Path(path).expanduser()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="model-store") if background else None
        self._pending: List[Future] = []
        self._lock = threading.Lock()
        self._closed = False

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def load(self) -> LearnedModel:
        """Reads the persisted model, or returns an empty one."""
        if not self.path.exists():
            logger.info(f"No saved model at {self.path}. Starting untrained.")
            return LearnedModel()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                model = LearnedModel.from_dict(json.load(f))
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.warning(f"Could not load model from {self.path} ({exc}). Starting untrained.")
            return LearnedModel()

        logger.info(
            f"Loaded model from {self.path}: {model.total_examples:,} examples, "
            f"{len(model.category_doc_counts)} categories."
        )
        return model

    def save(self, model: LearnedModel) -> None:
        """Queues a write of the model's current state."""
        snapshot = model.to_dict()

        if self._executor is None or self._closed:
            self._write(snapshot)
            return

        future = self._executor.submit(self._write, snapshot)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def flush(self, timeout: float | None = None) -> None:
        """Blocks until queued writes finish (or the timeout elapses)."""
        with self._lock:
            pending, self._pending = self._pending, []
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Flushes and stops the worker. Later saves are written inline."""
        self.flush()
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _write(self, snapshot: Dict[str, Any]) -> bool:
        """Atomic write via temp file + rename. Failures are logged, not raised."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot, f)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning(f"Model save to {self.path} failed ({exc}). Will retry on next flush.")
            return False

        logger.debug(f"Model saved to {self.path} ({snapshot['total_examples']:,} examples).")
        return True
