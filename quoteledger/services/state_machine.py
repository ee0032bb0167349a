"""
State machine that enforces the agreement lifecycle.

This is the core enforcement mechanism - every status change MUST go through
here, and every status change lands on the audit timeline in the same
transaction.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from quoteledger.models.domain import Agreement
from quoteledger.models.enums import AgreementStatus, AuditActor, AuditEventType, CorrectionType
from quoteledger.request_context import RequestContext
from quoteledger.services.audit_log import AuditLog
from quoteledger.services.results import OperationResult
from quoteledger.utils.clock import utcnow

logger = logging.getLogger(__name__)

S = AgreementStatus

VALID_TRANSITIONS: Dict[AgreementStatus, List[AgreementStatus]] = {
    S.DRAFT: [S.SENT, S.CANCELLED],
    S.SENT: [S.ACCEPTED, S.CANCELLED],
    S.ACCEPTED: [S.DEPOSIT_SENT, S.CANCELLED],
    S.DEPOSIT_SENT: [S.DEPOSIT_RECEIVED, S.CANCELLED],
    S.DEPOSIT_RECEIVED: [S.IN_PROGRESS, S.CANCELLED],
    S.IN_PROGRESS: [S.COMPLETED, S.CANCELLED],
    S.COMPLETED: [],
    S.CANCELLED: [],
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})

# Stepping back one stage when a claim turns out to be wrong (e.g. the client
# marked the deposit as sent by mistake). Acceptance and terminal states are
# never reverted; a CORRECTION event documents those instead.
REVERT_TRANSITIONS: Dict[AgreementStatus, List[AgreementStatus]] = {
    S.SENT: [S.DRAFT],
    S.DEPOSIT_SENT: [S.ACCEPTED],
    S.DEPOSIT_RECEIVED: [S.DEPOSIT_SENT],
    S.IN_PROGRESS: [S.DEPOSIT_RECEIVED],
}

# Fixed, not computed: the timeline and exports key off these event types.
STATUS_EVENT_TYPES: Dict[AgreementStatus, AuditEventType] = {
    S.DRAFT: AuditEventType.CREATED,
    S.SENT: AuditEventType.SENT,
    S.ACCEPTED: AuditEventType.ACCEPTED,
    S.DEPOSIT_SENT: AuditEventType.DEPOSIT_SENT,
    S.DEPOSIT_RECEIVED: AuditEventType.DEPOSIT_RECEIVED,
    S.IN_PROGRESS: AuditEventType.IN_PROGRESS,
    S.COMPLETED: AuditEventType.COMPLETED,
    S.CANCELLED: AuditEventType.CANCELLED,
}

MAX_CORRECTION_DESCRIPTION = 2000


def is_valid_transition(from_status: AgreementStatus, to_status: AgreementStatus) -> bool:
    """
    Cancellation is checked before the table so any non-terminal status,
    including ones added later, can be cancelled.
    """
    if to_status == S.CANCELLED and from_status not in TERMINAL_STATUSES:
        return True
    return to_status in VALID_TRANSITIONS[from_status]


def get_allowed_transitions(current_status: AgreementStatus) -> List[AgreementStatus]:
    allowed = list(VALID_TRANSITIONS[current_status])
    if current_status not in TERMINAL_STATUSES and S.CANCELLED not in allowed:
        allowed.append(S.CANCELLED)
    return allowed


def get_allowed_reverts(current_status: AgreementStatus) -> List[AgreementStatus]:
    return list(REVERT_TRANSITIONS.get(current_status, []))


def event_type_for_status(status: AgreementStatus) -> AuditEventType:
    return STATUS_EVENT_TYPES[status]


def _names(statuses: List[AgreementStatus]) -> str:
    return ", ".join(s.value for s in statuses) or "none"


def _json_safe(value: Any) -> Any:
    """Audit metadata is stored as JSON; money goes in as strings."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class StateMachine:
    """Enforces status transition rules and records every change."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLog(db)

    def transition(
        self,
        agreement_id: str,
        new_status: AgreementStatus,
        actor: AuditActor,
        metadata: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
        changes: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """
        Move an agreement to new_status.

        changes are extra column values written by the same conditional
        UPDATE, so they land only if the transition does.

        Invariants:
        - Only transitions allowed by is_valid_transition are applied
        - Entering ACCEPTED sets locked_at once; nothing ever clears it
        - Exactly one audit event per applied transition, in the same commit
        - A concurrent transition that got there first makes this one fail
          instead of double-applying
        """
        agreement = self._load(agreement_id)
        if agreement is None:
            return OperationResult.not_found()

        current = agreement.status
        if not is_valid_transition(current, new_status):
            return self._refuse(agreement_id, current, new_status)

        values: Dict[str, Any] = dict(changes or {})
        values.pop("locked_at", None)
        values.update(status=new_status, updated_at=utcnow())
        if new_status == S.ACCEPTED and current != S.ACCEPTED and agreement.locked_at is None:
            values["locked_at"] = utcnow()

        audit_metadata = {
            key: _json_safe(value) for key, value in (metadata or {}).items() if value is not None
        }
        # The recorded statuses always come from storage, never from the caller
        audit_metadata["fromStatus"] = current.value
        audit_metadata["toStatus"] = new_status.value

        applied = self._apply(
            agreement_id,
            current,
            values,
            actor,
            event_type_for_status(new_status),
            audit_metadata,
            context,
        )
        if not applied:
            fresh = self._load(agreement_id)
            if fresh is None:
                return OperationResult.not_found()
            return self._refuse(agreement_id, fresh.status, new_status)

        logger.info(
            "Agreement %s: %s -> %s by %s", agreement_id, current.value, new_status.value, actor.value
        )
        return OperationResult.ok()

    def revert_status(
        self,
        agreement_id: str,
        target_status: AgreementStatus,
        actor: AuditActor,
        reason: str,
        context: Optional[RequestContext] = None,
    ) -> OperationResult:
        """
        Step an agreement back one stage, logged as STATUS_REVERTED.

        Uses REVERT_TRANSITIONS, not the forward table. locked_at is left alone.
        """
        agreement = self._load(agreement_id)
        if agreement is None:
            return OperationResult.not_found()

        current = agreement.status
        allowed = get_allowed_reverts(current)
        if target_status not in allowed:
            logger.warning(
                "Refused revert of agreement %s from %s to %s",
                agreement_id, current.value, target_status.value,
            )
            return OperationResult.invalid_transition(
                f"Cannot revert from {current.value} to {target_status.value}. "
                f"Allowed reverts: {_names(allowed)}",
                allowed,
            )

        applied = self._apply(
            agreement_id,
            current,
            {"status": target_status, "updated_at": utcnow()},
            actor,
            AuditEventType.STATUS_REVERTED,
            {"fromStatus": current.value, "toStatus": target_status.value, "reason": reason},
            context,
        )
        if not applied:
            fresh = self._load(agreement_id)
            if fresh is None:
                return OperationResult.not_found()
            allowed = get_allowed_reverts(fresh.status)
            return OperationResult.invalid_transition(
                f"Cannot revert from {fresh.status.value} to {target_status.value}. "
                f"Allowed reverts: {_names(allowed)}",
                allowed,
            )

        logger.info(
            "Agreement %s reverted %s -> %s by %s", agreement_id, current.value, target_status.value, actor.value
        )
        return OperationResult.ok()

    def record_correction(
        self,
        agreement_id: str,
        actor: AuditActor,
        correction_type: CorrectionType,
        description: str,
        affected_fields: Optional[List[str]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> OperationResult:
        """
        Document a mistake after the fact.

        Corrections explain, they never erase: the agreement is not touched
        and earlier events stay exactly as they were.
        """
        if not description or not description.strip():
            return OperationResult.invalid("Correction description is required")
        if len(description) > MAX_CORRECTION_DESCRIPTION:
            return OperationResult.invalid(
                f"Correction description must be at most {MAX_CORRECTION_DESCRIPTION} characters"
            )

        if self._load(agreement_id) is None:
            return OperationResult.not_found()

        self.audit.append(
            agreement_id,
            actor,
            AuditEventType.CORRECTION,
            {
                "correctionType": CorrectionType(correction_type).value,
                "description": description,
                "affectedFields": affected_fields,
                "newValues": _json_safe(new_values),
            },
            context=context,
        )
        return OperationResult.ok()

    # Convenience transitions used by the dashboard and public actions

    def send(self, agreement_id: str, actor: AuditActor, **kwargs) -> OperationResult:
        return self.transition(agreement_id, S.SENT, actor, **kwargs)

    def accept(
        self, agreement_id: str, actor: AuditActor, acknowledged_by: Optional[str] = None, **kwargs
    ) -> OperationResult:
        return self.transition(agreement_id, S.ACCEPTED, actor, {"acknowledgedBy": acknowledged_by}, **kwargs)

    def mark_deposit_sent(
        self,
        agreement_id: str,
        actor: AuditActor,
        amount: Optional[Decimal] = None,
        transaction_reference: Optional[str] = None,
        **kwargs,
    ) -> OperationResult:
        return self.transition(
            agreement_id,
            S.DEPOSIT_SENT,
            actor,
            {"amount": amount, "transactionReference": transaction_reference},
            **kwargs,
        )

    def mark_deposit_received(
        self,
        agreement_id: str,
        actor: AuditActor,
        amount: Optional[Decimal] = None,
        transaction_reference: Optional[str] = None,
        **kwargs,
    ) -> OperationResult:
        return self.transition(
            agreement_id,
            S.DEPOSIT_RECEIVED,
            actor,
            {"amount": amount, "transactionReference": transaction_reference},
            **kwargs,
        )

    def start_work(self, agreement_id: str, actor: AuditActor, **kwargs) -> OperationResult:
        return self.transition(agreement_id, S.IN_PROGRESS, actor, **kwargs)

    def complete(self, agreement_id: str, actor: AuditActor, **kwargs) -> OperationResult:
        return self.transition(agreement_id, S.COMPLETED, actor, **kwargs)

    def cancel(
        self, agreement_id: str, actor: AuditActor, reason: Optional[str] = None, **kwargs
    ) -> OperationResult:
        return self.transition(agreement_id, S.CANCELLED, actor, {"reason": reason}, **kwargs)

    def _load(self, agreement_id: str) -> Optional[Agreement]:
        # Another request may have moved it since this session last looked
        return (
            self.db.query(Agreement)
            .populate_existing()
            .filter(Agreement.id == agreement_id)
            .first()
        )

    def _refuse(
        self, agreement_id: str, current: AgreementStatus, requested: AgreementStatus
    ) -> OperationResult:
        allowed = get_allowed_transitions(current)
        logger.warning(
            "Refused transition of agreement %s from %s to %s",
            agreement_id, current.value, requested.value,
        )
        return OperationResult.invalid_transition(
            f"Invalid status transition from {current.value} to {requested.value}. "
            f"Allowed transitions: {_names(allowed)}",
            allowed,
        )

    def _apply(
        self,
        agreement_id: str,
        expected_status: AgreementStatus,
        values: Dict[str, Any],
        actor: AuditActor,
        event_type: AuditEventType,
        audit_metadata: Dict[str, Any],
        context: Optional[RequestContext],
    ) -> bool:
        """
        Conditional status write plus audit append, committed together.

        Returns False (with nothing written) when the status is no longer
        expected_status. Unexpected errors roll back and propagate.
        """
        try:
            result = self.db.execute(
                update(Agreement)
                .where(Agreement.id == agreement_id, Agreement.status == expected_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                return False

            self.audit.append(agreement_id, actor, event_type, audit_metadata, context=context, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return True
