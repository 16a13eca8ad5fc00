"""
test_loader.py - Policy Loader (YAML -> policy store).

Invariants:
1. A document is validated in full before any write
2. Policies are upserted by name; reloading never duplicates children
3. config_hash depends on content, not key order
"""

import os
from datetime import datetime

import pytest

from conftest import make_employee, make_policy, make_violation
from securewatch.models import PolicyAction, PolicyCondition, SecurityPolicy
from securewatch.services.policy.loader import PolicyConfigError, PolicyLoader, config_hash
from securewatch.services.policy.matcher import PolicyMatcher

SAMPLE_POLICY_PATH = os.path.join(os.path.dirname(__file__), "..", "..", "policy.yaml")

THRESHOLD_DOC = """
version: 2
policies:
  - name: high-risk
    priority: 10
    conditions:
      - field: risk_score
        operator: greater_than
        value: {threshold}
    actions:
      - action_type: email_alert
        config:
          recipients: [a@x.com]
"""


@pytest.fixture
def loader(session_factory, clock):
    return PolicyLoader(session_factory, clock=clock)


def count(session_factory, model):
    db = session_factory()
    try:
        return db.query(model).count()
    finally:
        db.close()


def get_policy(session_factory, name):
    db = session_factory()
    try:
        policy = db.query(SecurityPolicy).filter(SecurityPolicy.name == name).one()
        # Touch relationships before the session closes
        policy.conditions, policy.actions
        return policy
    finally:
        db.close()


class TestLoad:
    def test_sample_document_loads(self, loader, session_factory):
        result = loader.load_file(SAMPLE_POLICY_PATH)

        assert result.created == 4
        assert result.updated == 0
        assert result.version == "1.0"
        assert len(result.config_hash) == 64

        finance = get_policy(session_factory, "repeat-offender-finance")
        assert finance.scope == "group"
        assert finance.target_type == "department"
        assert [c.field for c in finance.conditions] == ["frequency", "severity"]
        assert [a.delay_minutes for a in finance.actions] == [0, 60]

    def test_list_values_stored_as_json(self, loader, session_factory):
        loader.load_file(SAMPLE_POLICY_PATH)
        bulk = get_policy(session_factory, "bulk-data-transfer")
        assert bulk.logical_operator == "OR"
        assert bulk.conditions[0].value == '["data_exfiltration", "bulk_download"]'

    def test_loaded_policy_matches(self, loader, session_factory, clock):
        loader.load_text(THRESHOLD_DOC.format(threshold=80))
        employee_id = make_employee(session_factory)
        violation = make_violation(
            session_factory, employee_id, datetime(2024, 3, 12, 10), metadata={"risk_score": 81}
        )

        matches = PolicyMatcher(session_factory, clock=clock).match(violation)

        assert [m.policy.name for m in matches] == ["high-risk"]

    def test_reload_updates_in_place(self, loader, session_factory):
        first = loader.load_text(THRESHOLD_DOC.format(threshold=80))
        second = loader.load_text(THRESHOLD_DOC.format(threshold=90))

        assert (second.created, second.updated) == (0, 1)
        assert first.config_hash != second.config_hash
        assert count(session_factory, SecurityPolicy) == 1
        assert count(session_factory, PolicyCondition) == 1
        assert count(session_factory, PolicyAction) == 1
        assert get_policy(session_factory, "high-risk").conditions[0].value == "90"

    def test_absent_policies_untouched(self, loader, session_factory):
        make_policy(session_factory, "hand-made", priority=7)

        loader.load_text(THRESHOLD_DOC.format(threshold=80))

        assert get_policy(session_factory, "hand-made").priority == 7
        assert count(session_factory, SecurityPolicy) == 2

    def test_disabled_action_kept_but_disabled(self, loader, session_factory):
        loader.load_text(
            """
policies:
  - name: quiet
    actions:
      - action_type: increase_monitoring
        enabled: false
"""
        )
        (action,) = get_policy(session_factory, "quiet").actions
        assert action.is_enabled is False

    def test_hash_ignores_key_order(self):
        assert config_hash({"a": 1, "b": [1, 2]}) == config_hash({"b": [1, 2], "a": 1})
        assert config_hash({"a": 1}) != config_hash({"a": 2})


class TestRejection:
    @pytest.mark.parametrize(
        "document",
        [
            # Unknown operator
            "policies:\n  - name: p\n    conditions:\n      - {field: risk_score, operator: roughly, value: 1}\n",
            # Group scope without target
            "policies:\n  - name: p\n    scope: group\n",
            # Unknown scope
            "policies:\n  - name: p\n    scope: team\n",
            # Invalid action config
            "policies:\n  - name: p\n    actions:\n      - {action_type: increase_monitoring, config: {duration_hours: 0}}\n",
            # Unknown action type
            "policies:\n  - name: p\n    actions:\n      - {action_type: send_sms}\n",
            # Duplicate names
            "policies:\n  - name: p\n  - name: p\n",
            # Not a mapping
            "- just\n- a list\n",
            # Not YAML
            "policies: [unclosed\n",
        ],
    )
    def test_invalid_document_writes_nothing(self, loader, session_factory, document):
        with pytest.raises(PolicyConfigError):
            loader.load_text(document)
        assert count(session_factory, SecurityPolicy) == 0

    def test_mixed_document_is_all_or_nothing(self, loader, session_factory):
        with pytest.raises(PolicyConfigError):
            loader.load_text(
                "policies:\n"
                "  - name: fine\n"
                "  - name: broken\n"
                "    conditions:\n"
                "      - {field: severity, operator: approximately, value: High}\n"
            )
        assert count(session_factory, SecurityPolicy) == 0

    def test_missing_file(self, loader, tmp_path):
        with pytest.raises(PolicyConfigError):
            loader.load_file(tmp_path / "absent.yaml")
