"""Tests for correlation ids and the audit trail."""

import asyncio
import json

from stackgraph.logging import REDACTED, AuditLogger, CorrelationContext


class TestCorrelationContext:
    def test_set_and_reset(self):
        token = CorrelationContext.set_correlation_id("run-1")
        assert CorrelationContext.get_correlation_id() == "run-1"
        CorrelationContext.reset(token)
        assert CorrelationContext.get_correlation_id() != "run-1"

    def test_tasks_inherit_the_run_id(self):
        async def scenario():
            CorrelationContext.set_correlation_id("run-2")
            return await asyncio.create_task(_current_id())

        assert asyncio.run(scenario()) == "run-2"


async def _current_id():
    return CorrelationContext.get_correlation_id()


class TestAuditLogger:
    def test_events_are_written_as_json_lines(self, tmp_path):
        path = tmp_path / "audit" / "events.jsonl"
        audit = AuditLogger(audit_file=str(path))

        audit.log_run_event("dev", "started", resources=3)
        audit.log_action_event("vpc", "network", "CREATE", "succeeded", attempts=1)

        events = [json.loads(line) for line in path.read_text().splitlines()]
        assert [e["event_type"] for e in events] == ["run", "reconcile"]
        assert events[1]["node"] == "vpc"
        assert events[1]["details"] == {"attempts": 1}

    def test_sensitive_details_are_redacted(self, tmp_path):
        path = tmp_path / "events.jsonl"
        AuditLogger(audit_file=str(path)).log_action_event(
            "image", "image", "CREATE", "succeeded", password="hunter2"
        )

        text = path.read_text()
        assert "hunter2" not in text
        assert json.loads(text)["details"]["password"] == REDACTED

    def test_audit_file_from_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STACKGRAPH_AUDIT_LOG", str(tmp_path / "from-env.jsonl"))
        audit = AuditLogger()
        audit.log_run_event("dev", "finished")
        assert (tmp_path / "from-env.jsonl").exists()
