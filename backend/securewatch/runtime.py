"""
runtime.py - Wires the engine's components from Settings.

Both process entry points (API and dispatcher worker) build their object
graph here so they agree on collaborators and capability checks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from securewatch.config import Settings, settings as default_settings
from securewatch.core.clock import utcnow
from securewatch.services.behavior.queue import AnalysisRecorder, BehavioralAnalysisQueue
from securewatch.services.collaborators.analyzer import HttpBehavioralAnalyzer
from securewatch.services.collaborators.base import BehavioralAnalyzer, Collaborators, MailTransport
from securewatch.services.collaborators.mail import SmtpMailTransport
from securewatch.services.collaborators.sql import (
    SqlAuditTrail,
    SqlDetailedLoggingStore,
    SqlEmployeeDirectory,
    SqlIncidentStore,
    SqlMonitoringStore,
    SqlNotificationStore,
    SqlRestrictionStore,
)
from securewatch.services.dispatch.capabilities import CapabilityRegistry
from securewatch.services.dispatch.dispatcher import ActionDispatcher
from securewatch.services.dispatch.store import ExecutionStore
from securewatch.services.policy.loader import PolicyLoader
from securewatch.services.policy.matcher import PolicyMatcher
from securewatch.services.policy.scheduler import ExecutionScheduler
from securewatch.services.violations import ViolationService

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    session_factory: sessionmaker
    capabilities: CapabilityRegistry
    collaborators: Collaborators
    violations: ViolationService
    dispatcher: ActionDispatcher
    loader: PolicyLoader
    behavior_queue: Optional[BehavioralAnalysisQueue]


def build_collaborators(
    session_factory: sessionmaker,
    cfg: Settings,
    mail: Optional[MailTransport] = None,
    clock=utcnow,
) -> Collaborators:
    kwargs = {"session_factory": session_factory, "clock": clock}
    return Collaborators(
        mail=mail if mail is not None else SmtpMailTransport(
            host=cfg.SMTP_HOST,
            port=cfg.SMTP_PORT,
            username=cfg.SMTP_USER,
            password=cfg.SMTP_PASSWORD,
            use_tls=cfg.SMTP_USE_TLS,
            sender=cfg.MAIL_FROM,
            timeout=cfg.SMTP_TIMEOUT_SECONDS,
        ),
        incidents=SqlIncidentStore(**kwargs),
        restrictions=SqlRestrictionStore(**kwargs),
        monitoring=SqlMonitoringStore(**kwargs),
        detailed_logging=SqlDetailedLoggingStore(**kwargs),
        notifications=SqlNotificationStore(**kwargs),
        directory=SqlEmployeeDirectory(management_roles=cfg.MANAGEMENT_ROLES, **kwargs),
        audit=SqlAuditTrail(**kwargs),
    )


def build_behavior_queue(
    session_factory: sessionmaker,
    capabilities: CapabilityRegistry,
    cfg: Settings,
    analyzer: Optional[BehavioralAnalyzer] = None,
    clock=utcnow,
) -> Optional[BehavioralAnalysisQueue]:
    if analyzer is None and cfg.BEHAVIOR_ANALYZER_URL:
        analyzer = HttpBehavioralAnalyzer(
            cfg.BEHAVIOR_ANALYZER_URL, timeout=cfg.BEHAVIOR_ANALYZER_TIMEOUT_SECONDS
        )
    if analyzer is None:
        logger.info("No behavioral analyzer configured; behavioral analysis disabled")
        return None

    recorder = None
    if capabilities.has("behavioral_analyses"):
        recorder = AnalysisRecorder(session_factory, clock=clock)
    else:
        logger.warning(
            "Table behavioral_analyses missing; analysis results will be logged only",
            extra={"diagnostic": "capability_missing"},
        )
    return BehavioralAnalysisQueue(
        analyzer,
        batch_size=cfg.BEHAVIOR_BATCH_SIZE,
        flush_interval_seconds=cfg.BEHAVIOR_FLUSH_INTERVAL_SECONDS,
        on_result=recorder,
        enabled=cfg.BEHAVIOR_ANALYSIS_ENABLED,
    )


def build_runtime(
    engine: Engine,
    session_factory: sessionmaker,
    cfg: Settings = default_settings,
    *,
    mail: Optional[MailTransport] = None,
    analyzer: Optional[BehavioralAnalyzer] = None,
    clock=utcnow,
) -> Runtime:
    capabilities = CapabilityRegistry.from_engine(engine)
    collaborators = build_collaborators(session_factory, cfg, mail=mail, clock=clock)
    capabilities.report(vars(collaborators))

    behavior_queue = build_behavior_queue(session_factory, capabilities, cfg, analyzer, clock)

    matcher = PolicyMatcher(
        session_factory,
        frequency_window_hours=cfg.FREQUENCY_WINDOW_HOURS,
        business_hours=(cfg.BUSINESS_HOURS_START, cfg.BUSINESS_HOURS_END),
        clock=clock,
    )
    scheduler = ExecutionScheduler(
        session_factory, deduplicate=cfg.SCHEDULER_DEDUPLICATE, clock=clock
    )
    violations = ViolationService(
        matcher, scheduler, behavior_queue, session_factory=session_factory, clock=clock
    )
    dispatcher = ActionDispatcher(
        ExecutionStore(session_factory, clock=clock),
        collaborators,
        capabilities,
        interval_seconds=cfg.DISPATCH_INTERVAL_SECONDS,
        batch_limit=cfg.DISPATCH_BATCH_LIMIT,
        max_workers=cfg.DISPATCH_MAX_WORKERS,
        max_retries=cfg.DISPATCH_MAX_RETRIES,
        retry_backoff_seconds=cfg.DISPATCH_RETRY_BACKOFF_SECONDS,
        timeout_for=cfg.action_timeout,
        management_roles=tuple(cfg.MANAGEMENT_ROLES),
        clock=clock,
    )
    return Runtime(
        session_factory=session_factory,
        capabilities=capabilities,
        collaborators=collaborators,
        violations=violations,
        dispatcher=dispatcher,
        loader=PolicyLoader(session_factory, clock=clock),
        behavior_queue=behavior_queue,
    )
