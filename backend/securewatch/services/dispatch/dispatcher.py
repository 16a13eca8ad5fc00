"""
dispatcher.py - Action Dispatcher.

A single polling loop selects due `pending` executions, claims each with a
compare-and-set, and runs the action handler on a bounded thread pool under
a per-action timeout.

Outcome rules:
- Handler returns: running -> succeeded with the result payload
- CapabilityMissing: fallback diagnostic logged, running -> succeeded with
  `degraded: true`
- Transient failure below the retry threshold: running -> pending with
  exponential backoff
- Anything else, or the threshold reached: running -> failed

The dispatcher is the sole owner of `running` executions. A failure in one
execution never affects another.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from securewatch.config import settings
from securewatch.core.clock import utcnow
from securewatch.core.errors import (
    ActionError,
    ActionErrorCode,
    CapabilityMissing,
    ConfigurationError,
    ErrorClass,
    TransientError,
    classify_exception,
)
from securewatch.models.enums import ExecutionStatus
from securewatch.schemas.actions import parse_action_config, resolve_action_type
from securewatch.services.collaborators.base import Collaborators
from securewatch.services.dispatch.capabilities import CapabilityRegistry
from securewatch.services.dispatch.handlers import (
    ACTION_HANDLERS,
    ActionContext,
    ActionResult,
    Handler,
    run_handler,
)
from securewatch.services.dispatch.store import ExecutionJob, ExecutionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    execution_id: int
    status: str
    retry_count: int
    degraded: bool = False
    error: Optional[dict[str, Any]] = None


@dataclass
class DispatchStats:
    due: int = 0
    claimed: int = 0
    outcomes: list[DispatchOutcome] = field(default_factory=list)

    def count(self, status: ExecutionStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status.value)


class ActionDispatcher:
    def __init__(
        self,
        store: ExecutionStore,
        collaborators: Collaborators,
        capabilities: CapabilityRegistry,
        *,
        handlers: Optional[dict[Any, Handler]] = None,
        interval_seconds: float = settings.DISPATCH_INTERVAL_SECONDS,
        batch_limit: int = settings.DISPATCH_BATCH_LIMIT,
        max_workers: int = settings.DISPATCH_MAX_WORKERS,
        max_retries: int = settings.DISPATCH_MAX_RETRIES,
        retry_backoff_seconds: float = settings.DISPATCH_RETRY_BACKOFF_SECONDS,
        timeout_for: Callable[[str], float] = settings.action_timeout,
        management_roles: tuple[str, ...] = tuple(settings.MANAGEMENT_ROLES),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.collaborators = collaborators
        self.capabilities = capabilities
        self.handlers = dict(ACTION_HANDLERS if handlers is None else handlers)
        self.interval_seconds = interval_seconds
        self.batch_limit = batch_limit
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.timeout_for = timeout_for
        self.management_roles = management_roles
        self._clock = clock

        # Jobs are processed on _pool; each handler call runs on _handler_pool
        # so the processing thread can stop waiting when the timeout expires.
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dispatch")
        self._handler_pool = ThreadPoolExecutor(
            max_workers=max_workers * 2, thread_name_prefix="action"
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --- Loop ---

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="action-dispatcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
        self._pool.shutdown(wait=True)
        self._handler_pool.shutdown(wait=False)

    def run_forever(self) -> None:
        logger.info(
            "Action dispatcher started (interval=%.1fs, batch=%d, max_retries=%d)",
            self.interval_seconds,
            self.batch_limit,
            self.max_retries,
        )
        while not self._stop.is_set():
            try:
                stats = self.run_once()
            except Exception as e:
                logger.error("Dispatcher tick failed: %s", e, exc_info=True)
                stats = None
            # A full batch means more work is due; poll again immediately
            if stats is None or stats.due < self.batch_limit:
                self._stop.wait(self.interval_seconds)
        logger.info("Action dispatcher stopped")

    def run_once(self) -> DispatchStats:
        """One tick: claim every due execution and wait for all of them to settle."""
        stats = DispatchStats()
        due = self.store.due_ids(self.batch_limit)
        stats.due = len(due)
        if not due:
            return stats

        futures = []
        for execution_id in due:
            job = self.store.claim(execution_id)
            if job is None:
                continue
            stats.claimed += 1
            futures.append(self._pool.submit(self.process, job))

        done, _ = wait(futures)
        for future in done:
            try:
                stats.outcomes.append(future.result())
            except Exception as e:
                # Finalizing failed (e.g. database down); the row stays running
                # until stale recovery returns it to pending.
                logger.error("Execution finalization failed: %s", e, exc_info=True)

        logger.info(
            "Dispatch tick: due=%d claimed=%d succeeded=%d failed=%d retrying=%d",
            stats.due,
            stats.claimed,
            stats.count(ExecutionStatus.SUCCEEDED),
            stats.count(ExecutionStatus.FAILED),
            stats.count(ExecutionStatus.PENDING),
        )
        return stats

    def recover_stale(self, older_than_seconds: float = settings.DISPATCH_STALE_RUNNING_SECONDS) -> int:
        return self.store.recover_stale(timedelta(seconds=older_than_seconds), self.max_retries)

    # --- Per execution ---

    def process(self, job: ExecutionJob) -> DispatchOutcome:
        try:
            result = self._execute(job)
        except CapabilityMissing as e:
            logger.warning(
                "Execution %s (%s): %s; side effect logged only",
                job.id,
                job.action_type,
                e.message,
                extra={
                    "diagnostic": "fallback",
                    "execution_id": job.id,
                    "capability": e.capability,
                    "action_config": job.action_config,
                },
            )
            result = ActionResult(
                {"fallback": "logged_only", "capability": e.capability},
                degraded=True,
            )
        except Exception as e:
            return self._on_failure(job, classify_exception(e))

        payload = result.to_dict()
        self.store.complete(job, payload)
        logger.info(
            "Execution %s (%s) succeeded%s",
            job.id,
            job.action_type,
            " [degraded]" if result.degraded else "",
        )
        self._audit(job, ExecutionStatus.SUCCEEDED, payload)
        return DispatchOutcome(job.id, ExecutionStatus.SUCCEEDED.value, job.retry_count, result.degraded)

    def _execute(self, job: ExecutionJob) -> ActionResult:
        action_type = resolve_action_type(job.action_type)
        handler = self.handlers.get(action_type)
        if handler is None:
            raise ConfigurationError(
                f"No handler registered for {action_type.value}",
                code=ActionErrorCode.UNSUPPORTED_ACTION,
            )

        try:
            raw = json.loads(job.action_config)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Action configuration is not JSON: {e}") from e
        config = parse_action_config(action_type.value, raw)

        violation, subject = self.store.load_context(job)
        if violation is None or subject is None:
            raise ConfigurationError(
                f"Execution references missing {'violation' if violation is None else 'employee'}",
                code=ActionErrorCode.MISSING_REFERENCE,
                details={"violation_id": job.violation_id, "employee_id": job.employee_id},
            )

        ctx = ActionContext(
            execution_id=job.id,
            policy_id=job.policy_id,
            policy_name=job.policy_name,
            violation=violation,
            subject=subject,
            collaborators=self.collaborators,
            capabilities=self.capabilities,
            now=self._clock(),
            management_roles=self.management_roles,
        )

        timeout = self.timeout_for(action_type.value)
        future = self._handler_pool.submit(run_handler, action_type, config, ctx, self.handlers)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            # The handler thread cannot be interrupted; it may still finish
            # later, which is safe because handlers are idempotent.
            raise TransientError(
                f"{action_type.value} exceeded {timeout:g}s timeout",
                code=ActionErrorCode.TIMEOUT,
            ) from None

    def _on_failure(self, job: ExecutionJob, error: ActionError) -> DispatchOutcome:
        retry_count = job.retry_count + 1
        if error.classification is ErrorClass.TRANSIENT and retry_count < self.max_retries:
            delay = self.retry_backoff_seconds * (2 ** (retry_count - 1))
            not_before = self._clock() + timedelta(seconds=delay)
            self.store.reschedule(job, error, retry_count, not_before)
            logger.warning(
                "Execution %s (%s) attempt %d/%d failed: %s; retrying at %s",
                job.id,
                job.action_type,
                retry_count,
                self.max_retries,
                error.message,
                not_before.isoformat(),
            )
            return DispatchOutcome(
                job.id, ExecutionStatus.PENDING.value, retry_count, error=error.to_dict()
            )

        self.store.fail(job, error, retry_count)
        logger.error(
            "Execution %s (%s) failed after %d attempt(s) [%s/%s]: %s",
            job.id,
            job.action_type,
            retry_count,
            error.classification.value,
            error.code.value,
            error.message,
        )
        self._audit(job, ExecutionStatus.FAILED, error.to_dict())
        return DispatchOutcome(job.id, ExecutionStatus.FAILED.value, retry_count, error=error.to_dict())

    def _audit(self, job: ExecutionJob, status: ExecutionStatus, payload: dict[str, Any]) -> None:
        audit = self.collaborators.audit
        if audit is None or not self.capabilities.has(audit.capability):
            return
        try:
            audit.record(
                employee_id=job.employee_id,
                action_type=f"policy_action_{status.value}",
                description=(
                    f"Policy '{job.policy_name}' action {job.action_type} {status.value}"
                ),
                severity="High" if status is ExecutionStatus.FAILED else "Low",
                metadata={
                    "execution_id": job.id,
                    "policy_id": job.policy_id,
                    "violation_id": job.violation_id,
                    "action_type": job.action_type,
                    "outcome": payload,
                },
            )
        except Exception as e:
            logger.warning("Audit entry for execution %s not written: %s", job.id, e)
