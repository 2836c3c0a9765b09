from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "booking.created",
    "booking.cancelled",
    "slot.created",
    "slot.updated",
    "slot.deleted",
]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def emit_audit_log(
    *,
    action: AuditAction,
    actor_id: str,
    slot_id: Optional[str],
    reservation_id: Optional[str] = None,
    status_from: Any = None,
    status_to: Any = None,
    booked_count: Optional[int] = None,
    capacity: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "request_id": get_request_id(),
        "actor_id": actor_id,
        "slot_id": slot_id,
        "reservation_id": reservation_id,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "booked_count": booked_count,
        "capacity": capacity,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
