"""
analyzer.py - HTTP client for the behavioral analysis service.

POST {base_url}/analyze/{employee_id} -> {"risk_score": float, "findings": [str]}

Transport errors and 5xx responses are raised to the caller; the
behavioral queue records them per employee and moves on.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from securewatch.config import settings
from securewatch.services.collaborators.base import AnalysisResult, BehavioralAnalyzer

logger = logging.getLogger(__name__)


class AnalyzerResponseError(Exception):
    """The analyzer answered with something other than an analysis."""


class HttpBehavioralAnalyzer(BehavioralAnalyzer):
    def __init__(
        self,
        base_url: str,
        timeout: float = settings.BEHAVIOR_ANALYZER_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def analyze(self, employee_id: int) -> AnalysisResult:
        response = self._client.post(f"/analyze/{employee_id}")
        response.raise_for_status()
        try:
            body = response.json()
            score = float(body["risk_score"])
        except (ValueError, KeyError, TypeError) as e:
            raise AnalyzerResponseError(
                f"Malformed analysis for employee {employee_id}: {e}"
            ) from e
        findings = [str(f) for f in body.get("findings") or []]
        logger.debug("Employee %s analyzed: risk_score=%.1f findings=%d", employee_id, score, len(findings))
        return AnalysisResult(risk_score=score, findings=findings)

    def close(self) -> None:
        self._client.close()
