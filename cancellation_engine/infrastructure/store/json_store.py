from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from cancellation_engine.application.exceptions import PolicyConfigurationError, PolicyNotFound
from cancellation_engine.application.ports.booking_store import BookingStorePort
from cancellation_engine.application.ports.policy_store import PolicyStorePort
from cancellation_engine.application.utils.policy_validation import validate_policy
from cancellation_engine.domain.entities.booking import (
    Booking,
    BookingStatus,
    CancellationRecord,
    RecordKind,
)
from cancellation_engine.domain.entities.cancellation_policy import (
    CancellationPolicy,
    CancellationRule,
    ExceptionReason,
    NoShowPolicy,
    PenaltyType,
    PolicyException,
    ReschedulePolicy,
    RescheduleFeeType,
)

logger = logging.getLogger(__name__)


class _JsonDirectory:
    """One JSON document per key, written atomically via temp file + rename."""

    def __init__(self, data_dir: str) -> None:
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, threading.Lock] = {}
        self._lock_lock = threading.Lock()  # Lock for managing locks dict

    def lock_for(self, key: str) -> threading.Lock:
        with self._lock_lock:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def path_for(self, key: str) -> Path:
        safe_key = "".join(ch for ch in key if ch.isalnum() or ch in "-_")
        if not safe_key:
            raise ValueError(f"Invalid store key: {key!r}")
        return self._data_dir / f"{safe_key}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        file_path = self.path_for(key)
        if not file_path.exists():
            return None
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, key: str, data: dict[str, Any]) -> None:
        file_path = self.path_for(key)
        temp_path = file_path.with_suffix(".json.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_path.replace(file_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def load_all(self) -> list[dict[str, Any]]:
        documents: list[dict[str, Any]] = []
        for file_path in sorted(self._data_dir.glob("*.json")):
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    documents.append(json.load(f))
            except (json.JSONDecodeError, OSError) as e:
                logger.error("Skipping unreadable document", extra={"reason": f"{file_path.name}: {e}"})
        return documents


class JsonBookingStore(BookingStorePort):
    def __init__(self, data_dir: str = "./data/bookings") -> None:
        self._dir = _JsonDirectory(data_dir)

    def get(self, booking_id: str) -> Booking | None:
        data = self._dir.load(booking_id)
        if data is None:
            return None
        return deserialize_booking(data)

    def add(self, booking: Booking) -> None:
        with self._dir.lock_for(booking.id):
            if self._dir.load(booking.id) is not None:
                raise ValueError(f"Booking {booking.id} already exists")
            self._dir.save(booking.id, serialize_booking(booking))

    def compare_and_swap(self, updated: Booking, expected_version: int) -> bool:
        if updated.version <= expected_version:
            raise ValueError("Updated booking must carry a higher version")
        with self._dir.lock_for(updated.id):
            data = self._dir.load(updated.id)
            if data is None or data.get("version") != expected_version:
                return False
            self._dir.save(updated.id, serialize_booking(updated))
            return True

    def list_by_provider(self, provider_id: str) -> list[Booking]:
        return [b for b in self._all() if b.provider_id == provider_id]

    def list_due(self, status: BookingStatus, scheduled_before: datetime) -> list[Booking]:
        due = [b for b in self._all() if b.status == status and b.scheduled_at <= scheduled_before]
        return sorted(due, key=lambda b: b.scheduled_at)

    def _all(self) -> list[Booking]:
        return [deserialize_booking(d) for d in self._dir.load_all()]


class JsonPolicyStore(PolicyStorePort):
    def __init__(self, data_dir: str = "./data/policies") -> None:
        self._dir = _JsonDirectory(data_dir)

    def get(self, provider_id: str) -> CancellationPolicy:
        try:
            data = self._dir.load(provider_id)
        except json.JSONDecodeError as e:
            raise PolicyConfigurationError(provider_id, f"unreadable policy document: {e}") from e
        if data is None:
            raise PolicyNotFound(provider_id)
        try:
            policy = deserialize_policy(data)
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise PolicyConfigurationError(provider_id, f"malformed policy document: {e}") from e
        return validate_policy(policy)

    def put(self, policy: CancellationPolicy) -> None:
        with self._dir.lock_for(policy.provider_id):
            self._dir.save(policy.provider_id, serialize_policy(policy))


def serialize_booking(booking: Booking) -> dict[str, Any]:
    return {
        "id": booking.id,
        "provider_id": booking.provider_id,
        "client_id": booking.client_id,
        "amount": str(booking.amount),
        "scheduled_at": booking.scheduled_at.isoformat(),
        "status": booking.status.value,
        "reschedule_count": booking.reschedule_count,
        "version": booking.version,
        "cancellation": _serialize_record(booking.cancellation) if booking.cancellation else None,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
        "updated_at": booking.updated_at.isoformat() if booking.updated_at else None,
    }


def deserialize_booking(data: dict[str, Any]) -> Booking:
    record = data.get("cancellation")
    return Booking(
        id=data["id"],
        provider_id=data["provider_id"],
        client_id=data["client_id"],
        amount=Decimal(data["amount"]),
        scheduled_at=datetime.fromisoformat(data["scheduled_at"]),
        status=BookingStatus(data.get("status", BookingStatus.pending.value)),
        reschedule_count=int(data.get("reschedule_count", 0)),
        version=int(data.get("version", 1)),
        cancellation=_deserialize_record(record) if record else None,
        created_at=_parse_optional_datetime(data.get("created_at")),
        updated_at=_parse_optional_datetime(data.get("updated_at")),
    )


def _serialize_record(record: CancellationRecord) -> dict[str, Any]:
    return {
        "kind": record.kind.value,
        "rule_matched": record.rule_matched,
        "penalty": str(record.penalty),
        "refund": str(record.refund),
        "reason": record.reason,
        "occurred_at": record.occurred_at.isoformat(),
        "client_reason": record.client_reason,
    }


def _deserialize_record(data: dict[str, Any]) -> CancellationRecord:
    return CancellationRecord(
        kind=RecordKind(data["kind"]),
        rule_matched=data["rule_matched"],
        penalty=Decimal(data["penalty"]),
        refund=Decimal(data["refund"]),
        reason=data["reason"],
        occurred_at=datetime.fromisoformat(data["occurred_at"]),
        client_reason=data.get("client_reason"),
    )


def serialize_policy(policy: CancellationPolicy) -> dict[str, Any]:
    no_show = policy.no_show_policy
    reschedule = policy.reschedule_policy
    return {
        "id": policy.id,
        "provider_id": policy.provider_id,
        "policy_name": policy.policy_name,
        "description": policy.description,
        "free_cancellation_window_hours": str(policy.free_cancellation_window_hours),
        "rules": [
            {
                "time_before_appointment_hours": str(r.time_before_appointment_hours),
                "penalty_type": r.penalty_type.value,
                "penalty_amount": str(r.penalty_amount),
                "refund_percentage": str(r.refund_percentage),
            }
            for r in policy.rules
        ],
        "no_show_policy": {
            "enabled": no_show.enabled,
            "grace_period_minutes": no_show.grace_period_minutes,
            "penalty_type": no_show.penalty_type.value,
            "penalty_amount": str(no_show.penalty_amount),
        },
        "reschedule_policy": {
            "allow_rescheduling": reschedule.allow_rescheduling,
            "max_reschedules_per_booking": reschedule.max_reschedules_per_booking,
            "min_notice_hours": str(reschedule.min_notice_hours),
            "fee_type": reschedule.fee_type.value,
            "fee_amount": str(reschedule.fee_amount),
        },
        "exceptions": [
            {
                "reason": e.reason.value,
                "refund_percentage": str(e.refund_percentage),
                "requires_proof": e.requires_proof,
                "notes": e.notes,
            }
            for e in policy.exceptions
        ],
    }


def deserialize_policy(data: dict[str, Any]) -> CancellationPolicy:
    """
    id, provider_id, free_cancellation_window_hours and each rule's threshold and
    penalty_type are required and raise when missing. The no_show_policy,
    reschedule_policy and exceptions sections, and per-rule amounts, fall back to
    the dataclass defaults.
    """
    no_show = data.get("no_show_policy") or {}
    reschedule = data.get("reschedule_policy") or {}
    return CancellationPolicy(
        id=str(data["id"]),
        provider_id=str(data["provider_id"]),
        policy_name=data.get("policy_name") or "Cancellation Policy",
        description=data.get("description"),
        free_cancellation_window_hours=Decimal(str(data["free_cancellation_window_hours"])),
        rules=tuple(
            CancellationRule(
                time_before_appointment_hours=Decimal(str(r["time_before_appointment_hours"])),
                penalty_type=PenaltyType(r["penalty_type"]),
                penalty_amount=Decimal(str(r.get("penalty_amount", "0"))),
                refund_percentage=Decimal(str(r.get("refund_percentage", "100"))),
            )
            for r in data["rules"]
        ),
        no_show_policy=NoShowPolicy(
            enabled=bool(no_show.get("enabled", True)),
            grace_period_minutes=int(no_show.get("grace_period_minutes", 15)),
            penalty_type=PenaltyType(no_show.get("penalty_type", PenaltyType.full_charge.value)),
            penalty_amount=Decimal(str(no_show.get("penalty_amount", "100"))),
        ),
        reschedule_policy=ReschedulePolicy(
            allow_rescheduling=bool(reschedule.get("allow_rescheduling", True)),
            max_reschedules_per_booking=int(reschedule.get("max_reschedules_per_booking", 2)),
            min_notice_hours=Decimal(str(reschedule.get("min_notice_hours", "24"))),
            fee_type=RescheduleFeeType(reschedule.get("fee_type", RescheduleFeeType.none.value)),
            fee_amount=Decimal(str(reschedule.get("fee_amount", "0"))),
        ),
        exceptions=tuple(
            PolicyException(
                reason=ExceptionReason(e["reason"]),
                refund_percentage=Decimal(str(e.get("refund_percentage", "100"))),
                requires_proof=bool(e.get("requires_proof", False)),
                notes=e.get("notes"),
            )
            for e in data.get("exceptions", [])
        ),
    )


def _parse_optional_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)
