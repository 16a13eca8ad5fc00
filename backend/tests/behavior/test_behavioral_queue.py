"""
test_behavioral_queue.py - Behavioral-Analysis Queue and analyzer client.

Invariants:
1. An employee queued twice before a flush is analyzed once
2. One employee's analyzer failure does not stop the batch
3. enqueue() never calls the analyzer
"""

import json
import time

import httpx
import pytest

from conftest import FakeAnalyzer, make_employee
from securewatch.models import BehavioralAnalysis, Employee
from securewatch.services.behavior.queue import AnalysisRecorder, BehavioralAnalysisQueue
from securewatch.services.collaborators.analyzer import (
    AnalyzerResponseError,
    HttpBehavioralAnalyzer,
)


class TestBatching:
    def test_duplicate_enqueue_analyzed_once(self):
        analyzer = FakeAnalyzer()
        queue = BehavioralAnalysisQueue(analyzer, batch_size=10, flush_interval_seconds=60)

        assert queue.enqueue(1, "ingest") is True
        assert queue.enqueue(1, "ingest") is False
        assert queue.enqueue(2, "ingest") is True
        assert analyzer.calls == []

        outcomes = queue.flush()

        assert analyzer.calls == [1, 2]
        assert [o.employee_id for o in outcomes] == [1, 2]
        assert len(queue) == 0

    def test_requeue_after_flush_analyzed_again(self):
        analyzer = FakeAnalyzer()
        queue = BehavioralAnalysisQueue(analyzer, batch_size=10)

        queue.enqueue(1, "ingest")
        queue.flush()
        queue.enqueue(1, "ingest")
        queue.flush()

        assert analyzer.calls == [1, 1]

    def test_failure_isolated_per_employee(self, caplog):
        analyzer = FakeAnalyzer(failing={2})
        queue = BehavioralAnalysisQueue(analyzer, batch_size=2)
        for employee_id in (1, 2, 3):
            queue.enqueue(employee_id, "ingest")

        outcomes = {o.employee_id: o for o in queue.flush()}

        assert analyzer.calls == [1, 2, 3]
        assert outcomes[1].success and outcomes[3].success
        assert outcomes[2].success is False
        assert "unreachable" in outcomes[2].error
        assert queue.stats()["processed"] == 2
        assert queue.stats()["failed"] == 1

    def test_recorder_failure_marks_employee_failed(self):
        def broken_recorder(entry, result):
            raise RuntimeError("disk full")

        queue = BehavioralAnalysisQueue(FakeAnalyzer(), on_result=broken_recorder)
        queue.enqueue(5, "ingest")

        (outcome,) = queue.flush()

        assert outcome.success is False
        assert outcome.risk_score == 42.0
        assert outcome.error.startswith("record failed")

    def test_disabled_queue_accepts_nothing(self):
        analyzer = FakeAnalyzer()
        queue = BehavioralAnalysisQueue(analyzer, enabled=False)

        assert queue.enqueue(1, "ingest") is False
        assert queue.flush() == []
        assert queue.stats()["enabled"] is False

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            BehavioralAnalysisQueue(FakeAnalyzer(), batch_size=0)

    def test_stats(self):
        queue = BehavioralAnalysisQueue(FakeAnalyzer(), batch_size=5, flush_interval_seconds=2.0)
        queue.enqueue(1, "ingest")

        stats = queue.stats()

        assert stats["queue_size"] == 1
        assert stats["processing"] is False
        assert stats["batch_size"] == 5
        assert stats["last_flush_at"] is None


class TestBackgroundFlush:
    def test_size_threshold_triggers_flush(self):
        analyzer = FakeAnalyzer()
        # Interval far away: only the size trigger can flush in time
        queue = BehavioralAnalysisQueue(analyzer, batch_size=2, flush_interval_seconds=30)
        queue.start()
        try:
            queue.enqueue(1, "ingest")
            queue.enqueue(2, "ingest")
            deadline = time.monotonic() + 5
            while len(analyzer.calls) < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            queue.stop(drain=False, timeout=5)

        assert analyzer.calls == [1, 2]

    def test_interval_triggers_flush(self):
        analyzer = FakeAnalyzer()
        queue = BehavioralAnalysisQueue(analyzer, batch_size=100, flush_interval_seconds=0.05)
        queue.start()
        try:
            queue.enqueue(9, "ingest")
            deadline = time.monotonic() + 5
            while not analyzer.calls and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            queue.stop(drain=False, timeout=5)

        assert analyzer.calls == [9]

    def test_stop_drains_remaining(self):
        analyzer = FakeAnalyzer()
        queue = BehavioralAnalysisQueue(analyzer, batch_size=100, flush_interval_seconds=30)
        queue.start()
        queue.enqueue(4, "ingest")

        queue.stop(drain=True, timeout=5)

        assert analyzer.calls == [4]


class TestRecorder:
    def test_persists_analysis_and_updates_score(self, session_factory, clock):
        employee_id = make_employee(session_factory, risk_score=10.0)
        queue = BehavioralAnalysisQueue(
            FakeAnalyzer(score=77.5),
            on_result=AnalysisRecorder(session_factory, clock=clock),
        )
        queue.enqueue(employee_id, "violation:v-1")

        queue.flush()

        db = session_factory()
        try:
            (analysis,) = db.query(BehavioralAnalysis).all()
            assert analysis.risk_score == 77.5
            assert analysis.trigger_source == "violation:v-1"
            assert analysis.analyzed_at == clock.now
            assert json.loads(analysis.findings_json) == ["after-hours activity"]
            assert db.get(Employee, employee_id).risk_score == 77.5
        finally:
            db.close()


class TestHttpAnalyzer:
    def _analyzer(self, handler):
        client = httpx.Client(base_url="http://analyzer.test", transport=httpx.MockTransport(handler))
        return HttpBehavioralAnalyzer("http://analyzer.test", client=client)

    def test_parses_analysis(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"risk_score": "63.5", "findings": ["bulk downloads"]})

        result = self._analyzer(handler).analyze(12)

        assert seen == [("POST", "/analyze/12")]
        assert result.risk_score == 63.5
        assert result.findings == ["bulk downloads"]

    def test_server_error_raises(self):
        analyzer = self._analyzer(lambda request: httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            analyzer.analyze(1)

    def test_malformed_body_raises(self):
        analyzer = self._analyzer(lambda request: httpx.Response(200, json={"score": 1}))
        with pytest.raises(AnalyzerResponseError):
            analyzer.analyze(1)
