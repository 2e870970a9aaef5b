"""
solharvest Infrastructure: State Store

JSON persistence for execution records, strategy snapshots and the daily
trade counter. The core keeps only a bounded in-memory tail; this file is
the durable copy.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


DEFAULT_STATE = {
    "executions": [],  # bounded journal of TradeExecution dicts, oldest first
    "strategies": {},  # strategy id -> latest snapshot
    "daily_counter": None,  # {"date", "count", "limit"}
    "updated_at": None,
}


class StateStore:
    """
    Persistent state storage using a JSON file.

    Features:
    - Atomic writes (temp file + rename)
    - Bounded execution journal
    - Latest snapshot per strategy
    - Thread-safe operations
    """

    MAX_EXECUTIONS = 5000

    def __init__(self, state_file: Optional[str] = None, max_executions: int = MAX_EXECUTIONS):
        """
        Initialize state store.

        Args:
            state_file: Path to state JSON file (default: $STATE_FILE or data/.state.json)
            max_executions: Journal length kept on disk
        """
        if state_file:
            self.state_file = Path(state_file)
        else:
            self.state_file = Path(os.getenv("STATE_FILE", "data/.state.json"))

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.max_executions = max_executions
        self._lock = threading.RLock()
        self._state: Optional[Dict[str, Any]] = None
        logger.info(f"Initialized StateStore at {self.state_file}")

    def load(self) -> Dict[str, Any]:
        """
        Load state from file.

        Returns:
            State dict with defaults merged
        """
        with self._lock:
            if self._state is not None:
                return self._state

            if not self.state_file.exists():
                logger.debug("No state file found, using defaults")
                self._state = copy.deepcopy(DEFAULT_STATE)
                return self._state

            try:
                with open(self.state_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load state: {e}")
                self._state = copy.deepcopy(DEFAULT_STATE)
                return self._state

            if not isinstance(data, dict):
                logger.warning("Invalid state file format, using defaults")
                data = {}

            state = copy.deepcopy(DEFAULT_STATE)
            state.update(data)
            self._state = state
            logger.debug("Loaded state from file")
            return state

    def save(self, state: Dict[str, Any]) -> None:
        """
        Save state to file atomically.

        Args:
            state: State dict to save
        """
        with self._lock:
            state["updated_at"] = datetime.now(timezone.utc).isoformat()
            try:
                temp_fd, temp_path = tempfile.mkstemp(
                    dir=self.state_file.parent,
                    prefix=".state_",
                    suffix=".json.tmp",
                )
                with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                    json.dump(state, f, indent=2, default=str)

                # Atomic rename
                os.replace(temp_path, self.state_file)
                self._state = state
                logger.debug("Saved state to file")
            except OSError as e:
                logger.error(f"Failed to save state: {e}")

    def append_execution(self, record: Dict[str, Any]) -> None:
        with self._lock:
            state = self.load()
            executions = state.setdefault("executions", [])
            executions.append(record)
            if len(executions) > self.max_executions:
                del executions[: len(executions) - self.max_executions]
            self.save(state)

    def recent_executions(self, n: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            executions = self.load().get("executions", [])
            return list(executions[-n:]) if n > 0 else []

    def save_strategy_snapshot(self, strategy_id: str, snapshot: Dict[str, Any]) -> None:
        with self._lock:
            state = self.load()
            state.setdefault("strategies", {})[strategy_id] = snapshot
            self.save(state)

    def strategy_snapshot(self, strategy_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.load().get("strategies", {}).get(strategy_id)

    def load_daily_counter(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.load().get("daily_counter")

    def save_daily_counter(self, snapshot: Dict[str, Any]) -> None:
        with self._lock:
            state = self.load()
            state["daily_counter"] = snapshot
            self.save(state)
