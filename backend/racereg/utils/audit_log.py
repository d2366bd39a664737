from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Literal, Mapping, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "registration.start",
    "registration.submit_info",
    "registration.waiver_accept",
    "registration.answers_submit",
    "registration.add_ons_update",
    "registration.finalize",
    "registration.demo_pay",
    "registration.cancel",
    "registration.expire",
    "discount_code.apply",
    "discount_code.remove",
    "group_batch.rows_upload",
    "group_batch.reserve",
    "registration_invite.claim",
]
AuditInitiator = Literal["user", "system", "organizer"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _jsonable(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    entity_type: str,
    entity_id: int,
    actor_user_id: Optional[int],
    organization_id: Optional[int],
    before: Optional[Mapping[str, Any]] = None,
    after: Optional[Mapping[str, Any]] = None,
    message: Optional[str] = None,
) -> None:
    """Emit one structured JSON audit record.

    Callers invoke this inside the open transaction. A RuntimeError here is
    expected to abort that transaction so the change and its audit record
    commit together or not at all.
    """
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "actor_user_id": actor_user_id,
        "organization_id": organization_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "before": _jsonable(before) if before else None,
        "after": _jsonable(after) if after else None,
        "message": message,
    }

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
