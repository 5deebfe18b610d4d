"""
Per-subject interaction counters and the progress dashboard derived from them.
"""
import json
import logging
from typing import Optional

from config import SESSIONS_KEY
from data_models import ProgressEntry, ProgressReport, Subject
from errors import PersistenceError
from storage import KeyValueStore


class SessionCounters:
    """
    Counts accepted turns per subject.

    Several sessions may share one store, so every increment re-reads the
    stored counts and writes them back in a single store update.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.counts: dict[Subject, int] = {subject: 0 for subject in Subject}

    def _merge(self, raw: Optional[str]) -> None:
        """Merges stored counts over the in-memory ones. Unknown or malformed entries are skipped."""
        if not raw:
            return
        try:
            saved = json.loads(raw)
        except json.JSONDecodeError as e:
            logging.error(f"Ignoring malformed session counters: {e}")
            return
        if not isinstance(saved, dict):
            return
        for key, value in saved.items():
            try:
                subject = Subject.lookup(key)
                self.counts[subject] = max(int(value), 0)
            except (ValueError, TypeError):
                logging.warning(f"Skipping unknown session counter entry '{key}'.")

    def _encode(self) -> str:
        return json.dumps({s.value: n for s, n in self.counts.items()})

    def load(self) -> None:
        self._merge(self.store.get(SESSIONS_KEY))

    def increment(self, subject: Subject) -> int:
        counted = False

        def bump(raw: Optional[str]) -> str:
            nonlocal counted
            self._merge(raw)
            self.counts[subject] = self.counts.get(subject, 0) + 1
            counted = True
            return self._encode()

        try:
            self.store.update(SESSIONS_KEY, bump)
        except PersistenceError:
            # The turn still counts for this session even if storage is unusable.
            if not counted:
                self.counts[subject] = self.counts.get(subject, 0) + 1
            raise
        return self.counts[subject]

    def get(self, subject: Subject) -> int:
        return self.counts.get(subject, 0)

    def total(self) -> int:
        return sum(self.counts.values())

    def as_dict(self) -> dict[str, int]:
        return {subject.value: count for subject, count in self.counts.items()}

    def progress(self) -> ProgressReport:
        """Builds the dashboard: a score of 5 points per session capped at 100, and one level per ten sessions."""
        entries = [
            ProgressEntry(subject=subject, sessions=count, score=min(count * 5, 100))
            for subject, count in self.counts.items()
        ]
        total = self.total()
        return ProgressReport(entries=entries, total_sessions=total, level=total // 10 + 1)
