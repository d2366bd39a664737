import json
from datetime import datetime
from typing import Any, List

import pytest
from racereg.models import RegistrationStatus
from racereg.utils import audit_log
from racereg.utils.request_id import set_request_id


def test_emit_audit_log_outputs_json(monkeypatch: pytest.MonkeyPatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    set_request_id("req-123")
    audit_log.emit_audit_log(
        action="registration.finalize",
        initiator="user",
        entity_type="registration",
        entity_id=1,
        actor_user_id=4,
        organization_id=3,
        before={"status": RegistrationStatus.SUBMITTED},
        after={"status": RegistrationStatus.PAYMENT_PENDING, "expires_at": datetime(2026, 3, 1, 12, 0)},
    )
    set_request_id(None)

    assert len(messages) == 1
    payload = json.loads(messages[0])
    assert payload["action"] == "registration.finalize"
    assert payload["initiator"] == "user"
    assert payload["request_id"] == "req-123"
    assert payload["before"] == {"status": "submitted"}
    assert payload["after"]["status"] == "payment_pending"
    assert payload["after"]["expires_at"] == "2026-03-01T12:00:00"
    assert "timestamp" in payload
    assert "message" not in payload


def test_emit_audit_log_raises_on_logger_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    class DummyLogger:
        def info(self, _: Any) -> None:
            raise ValueError("fail")

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    with pytest.raises(RuntimeError):
        audit_log.emit_audit_log(
            action="registration.cancel",
            initiator="user",
            entity_type="registration",
            entity_id=1,
            actor_user_id=4,
            organization_id=3,
            before={"status": RegistrationStatus.STARTED},
            after={"status": RegistrationStatus.CANCELLED},
        )
