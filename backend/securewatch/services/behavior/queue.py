"""
queue.py - Behavioral-Analysis Queue.

Decouples ingestion throughput from the slow, rate-limited behavioral
analyzer:

- enqueue() never blocks on the analyzer and ignores employees already queued
- A background thread flushes when the queue reaches `batch_size` or when
  `flush_interval_seconds` elapse, whichever comes first
- A flush drains the queue and analyzes employees one at a time, in batches
  of `batch_size`; one employee's failure never stops the rest
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import sessionmaker

from securewatch.config import settings
from securewatch.core.clock import utcnow
from securewatch.database import SessionLocal
from securewatch.models import BehavioralAnalysis, Employee
from securewatch.services.collaborators.base import AnalysisResult, BehavioralAnalyzer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueEntry:
    employee_id: int
    source: str
    enqueued_at: float


@dataclass(frozen=True)
class AnalysisOutcome:
    employee_id: int
    source: str
    success: bool
    risk_score: Optional[float] = None
    findings: list[str] = field(default_factory=list)
    error: Optional[str] = None


ResultRecorder = Callable[[QueueEntry, AnalysisResult], None]


class AnalysisRecorder:
    """Persist an analysis and refresh the employee's historical risk score."""

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def __call__(self, entry: QueueEntry, result: AnalysisResult) -> None:
        db = self._session_factory()
        try:
            db.add(
                BehavioralAnalysis(
                    employee_id=entry.employee_id,
                    trigger_source=entry.source,
                    risk_score=result.risk_score,
                    findings_json=json.dumps(result.findings),
                    analyzed_at=self._clock(),
                )
            )
            employee = db.get(Employee, entry.employee_id)
            if employee is not None:
                employee.risk_score = result.risk_score
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class BehavioralAnalysisQueue:
    def __init__(
        self,
        analyzer: BehavioralAnalyzer,
        *,
        batch_size: int = settings.BEHAVIOR_BATCH_SIZE,
        flush_interval_seconds: float = settings.BEHAVIOR_FLUSH_INTERVAL_SECONDS,
        on_result: Optional[ResultRecorder] = None,
        enabled: bool = True,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.analyzer = analyzer
        self.batch_size = batch_size
        self.flush_interval_seconds = flush_interval_seconds
        self.on_result = on_result
        self.enabled = enabled

        self._pending: "OrderedDict[int, QueueEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._processing = False
        self._processed = 0
        self._failed = 0
        self._last_flush_at: Optional[float] = None

    def enqueue(self, employee_id: int, source: str) -> bool:
        """
        Queue an employee for analysis.

        Returns:
            True if queued, False if already queued or the queue is disabled
        """
        if not self.enabled:
            return False
        with self._lock:
            if employee_id in self._pending:
                return False
            self._pending[employee_id] = QueueEntry(employee_id, source, time.monotonic())
            size = len(self._pending)
        if size >= self.batch_size:
            self._wakeup.set()
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self) -> list[AnalysisOutcome]:
        """Drain the queue and analyze every drained employee. Safe to call directly."""
        with self._flush_lock:
            with self._lock:
                entries = list(self._pending.values())
                self._pending.clear()
            if not entries:
                return []

            self._processing = True
            outcomes: list[AnalysisOutcome] = []
            try:
                for start in range(0, len(entries), self.batch_size):
                    for entry in entries[start:start + self.batch_size]:
                        outcomes.append(self._analyze(entry))
            finally:
                self._processing = False
                self._last_flush_at = time.time()

        failed = [o for o in outcomes if not o.success]
        self._processed += len(outcomes) - len(failed)
        self._failed += len(failed)
        logger.info(
            "Behavioral analysis flush: %d employee(s), %d failed",
            len(outcomes),
            len(failed),
        )
        return outcomes

    def _analyze(self, entry: QueueEntry) -> AnalysisOutcome:
        try:
            result = self.analyzer.analyze(entry.employee_id)
        except Exception as e:
            logger.warning(
                "Behavioral analysis for employee %s failed: %s",
                entry.employee_id,
                e,
                extra={"employee_id": entry.employee_id, "source": entry.source},
            )
            return AnalysisOutcome(entry.employee_id, entry.source, False, error=str(e))

        if self.on_result is not None:
            try:
                self.on_result(entry, result)
            except Exception as e:
                logger.error(
                    "Recording analysis for employee %s failed: %s", entry.employee_id, e
                )
                return AnalysisOutcome(
                    entry.employee_id,
                    entry.source,
                    False,
                    risk_score=result.risk_score,
                    findings=list(result.findings),
                    error=f"record failed: {e}",
                )

        return AnalysisOutcome(
            entry.employee_id,
            entry.source,
            True,
            risk_score=result.risk_score,
            findings=list(result.findings),
        )

    # --- Background flushing ---

    def start(self) -> None:
        if not self.enabled or (self._thread and self._thread.is_alive()):
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="behavioral-queue", daemon=True)
        self._thread.start()
        logger.info(
            "Behavioral analysis queue started (batch_size=%d, interval=%.1fs)",
            self.batch_size,
            self.flush_interval_seconds,
        )

    def stop(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._wakeup.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        if drain:
            self.flush()

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wakeup.wait(self.flush_interval_seconds)
            self._wakeup.clear()
            if self._stop.is_set():
                break
            try:
                self.flush()
            except Exception as e:
                logger.error("Behavioral analysis flush failed: %s", e, exc_info=True)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            size = len(self._pending)
        return {
            "enabled": self.enabled,
            "queue_size": size,
            "processing": self._processing,
            "processed": self._processed,
            "failed": self._failed,
            "batch_size": self.batch_size,
            "flush_interval_seconds": self.flush_interval_seconds,
            "last_flush_at": self._last_flush_at,
        }
