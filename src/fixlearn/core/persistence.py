"""Persistence Adapter

Serializes engine stores into a flat key namespace of a StateStore and
reads them back. Writes never raise; a value that cannot be parsed or fails
its schema on load is dropped so that store starts empty.
"""

import itertools
import json
import logging
import threading
from typing import Dict, Any, Iterable, List, Optional

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.core.exceptions import CorruptStateError, PersistenceError
from fixlearn.core.schema import validate_store_value
from fixlearn.core.state_store import StateStore
from fixlearn.utils.file_utils import canonical_json

logger = logging.getLogger(__name__)

PATTERNS_KEY = "learning.patterns"

# Every key the engine reads and writes, in load order.
STATE_KEYS = (
    PATTERNS_KEY,
    "learning.misdiagnosisPatterns",
    "learning.failedMethods",
    "learning.causalChains",
    "learning.solutionOptimization",
    "learning.crossIssueLearning",
    "learning.circularDependencies",
    "learning.blockingChains",
    "learning.debuggingPatterns",
    "learning.generalizedPatterns",
    "learning.generalizationRules",
    "learning.fixAttempts",
    "learning.timings",
    "learning.confidenceHistory",
    "learning.maskingWarnings",
    "learning.autoAdjustments",
    "learning.mistakePatterns",
    "learning.syntaxErrors",
)


class LearningPersistence:
    """Pass-through between engine state and the key/value store.

    Snapshots are taken under the engine lock but written after it is
    released, so two writers can reach the store out of order. Each
    snapshot carries a version from ``next_version``; a key is never
    overwritten by a snapshot older than the one that last wrote it.
    """

    def __init__(self, store: StateStore):
        self.store = store
        # Canonical text last written or read per key; unchanged values are not rewritten
        self._written: Dict[str, str] = {}
        self._key_versions: Dict[str, int] = {}
        self._versions = itertools.count(1)
        self._lock = threading.Lock()

        self.stats = {
            'writes': 0,
            'write_failures': 0,
            'corrupt_keys': 0,
            'stale_writes': 0,
        }

        self.logger = get_logger(component="persistence")

    def next_version(self) -> int:
        """Version for a snapshot about to be taken."""
        with self._lock:
            return next(self._versions)

    def save(self, state: Dict[str, Any], version: Optional[int] = None) -> List[str]:
        """Write every key of ``state``. Returns the keys that failed to write.

        Keys already written from a newer snapshot than ``version`` are
        skipped. Without a version the snapshot counts as the newest.
        """
        failed = []
        with self._lock:
            if version is None:
                version = next(self._versions)
            for key in sorted(state):
                if version < self._key_versions.get(key, 0):
                    self.stats['stale_writes'] += 1
                    logger.debug(f"Skipping stale snapshot {version} of {key}")
                    continue
                if self._write(key, state[key]):
                    self._key_versions[key] = version
                else:
                    failed.append(key)

        return failed

    def _write(self, key: str, value: Any) -> bool:
        try:
            text = canonical_json(value)
            if self._written.get(key) != text:
                self.store.set(key, text)
                self._written[key] = text
                self.stats['writes'] += 1
            return True
        except (PersistenceError, OSError, TypeError, ValueError) as e:
            self.stats['write_failures'] += 1
            self.logger.error(
                f"Failed to persist {key}: {e}",
                category=LogCategory.PERSISTENCE,
                include_stack=False
            )
            return False

    def load(self, keys: Iterable[str] = STATE_KEYS) -> Dict[str, Any]:
        """Parsed and validated values of every present key.

        Absent keys are left out. A corrupt key is logged and left out.
        Errors raised by the store itself propagate.
        """
        loaded = {}
        for key in keys:
            raw = self.store.get(key)
            if raw is None:
                continue

            try:
                loaded[key] = self._decode(key, raw)
            except CorruptStateError as e:
                self.stats['corrupt_keys'] += 1
                self.logger.error(
                    f"Discarding corrupt state for {e.key}: {e.reason}",
                    category=LogCategory.PERSISTENCE,
                    include_stack=False
                )
                continue

            with self._lock:
                self._written[key] = raw

        self.logger.info(
            f"Loaded {len(loaded)} learning stores",
            category=LogCategory.PERSISTENCE,
            metadata={'keys': sorted(loaded)}
        )
        return loaded

    def read(self, key: str) -> Optional[Any]:
        """Current stored value of one key, or None when absent or unreadable."""
        try:
            raw = self.store.get(key)
            return self._decode(key, raw) if raw is not None else None
        except (CorruptStateError, PersistenceError) as e:
            logger.debug(f"Stored value of {key} unavailable: {e}")
            return None

    @staticmethod
    def _decode(key: str, raw: str) -> Any:
        try:
            value = json.loads(raw)
        except ValueError as e:
            raise CorruptStateError(key, f"invalid JSON: {e}") from e
        return validate_store_value(key, value)
