"""
Actions a client takes through the public link - no login, only the slug.

Every action is attributed to CLIENT and carries the request's IP address
and user agent onto the timeline.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from quoteledger.models.domain import Agreement
from quoteledger.models.enums import AgreementStatus, AuditActor, AuditEventType
from quoteledger.request_context import RequestContext
from quoteledger.services.agreement_service import AgreementService
from quoteledger.services.audit_log import AuditLog
from quoteledger.services.results import OperationResult
from quoteledger.services.state_machine import StateMachine, get_allowed_transitions
from quoteledger.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


class PublicAgreementActions:
    def __init__(self, db: Session):
        self.db = db
        self.agreements = AgreementService(db)
        self.audit = AuditLog(db)
        self.state_machine = StateMachine(db)

    def view(self, public_slug: str, context: Optional[RequestContext] = None) -> OperationResult:
        """Load the agreement for the client and record that it was viewed."""
        agreement = self.agreements.get_by_slug(public_slug)
        if agreement is None:
            return OperationResult.not_found()

        self.audit.append(agreement.id, AuditActor.CLIENT, AuditEventType.VIEWED, context=context)
        self.db.refresh(agreement)
        return OperationResult.ok(agreement)

    def accept(
        self,
        public_slug: str,
        acknowledged_by: str,
        email: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> OperationResult:
        """
        Client acknowledges the agreement. Locks the commercial terms.

        The acknowledging name and email become the agreement's client details.
        """
        agreement = self.agreements.get_by_slug(public_slug)
        if agreement is None:
            return OperationResult.not_found()

        refusal = self._refuse_unless(agreement, AgreementStatus.SENT, "Agreement cannot be accepted")
        if refusal is not None:
            return refusal

        client_details = {}
        if acknowledged_by:
            client_details["client_name"] = acknowledged_by
        if email:
            client_details["client_email"] = email

        result = self.state_machine.transition(
            agreement.id,
            AgreementStatus.ACCEPTED,
            AuditActor.CLIENT,
            {"acknowledgedBy": acknowledged_by, "email": email},
            context=context,
            changes=client_details,
        )
        if not result.success:
            return result

        agreement = self.agreements.get_by_slug(public_slug)
        logger.info("Agreement %s accepted by %s", agreement.id, acknowledged_by)
        return OperationResult.ok(agreement)

    def confirm_deposit_sent(
        self,
        public_slug: str,
        transaction_reference: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> OperationResult:
        """Client says the deposit is on its way. Nothing here verifies that."""
        agreement = self.agreements.get_by_slug(public_slug)
        if agreement is None:
            return OperationResult.not_found()

        refusal = self._refuse_unless(
            agreement,
            AgreementStatus.ACCEPTED,
            "Deposit cannot be confirmed",
            "Agreement must be accepted first.",
        )
        if refusal is not None:
            return refusal

        return self.state_machine.mark_deposit_sent(
            agreement.id,
            AuditActor.CLIENT,
            amount=agreement.deposit_amount,
            transaction_reference=transaction_reference,
            context=context,
        )

    def _refuse_unless(
        self,
        agreement: Agreement,
        required: AgreementStatus,
        action: str,
        hint: str = "",
    ) -> Optional[OperationResult]:
        allowed = get_allowed_transitions(agreement.status)
        if agreement.status == AgreementStatus.CANCELLED:
            return OperationResult.invalid_transition("This agreement has been cancelled", allowed)
        if agreement.status == AgreementStatus.COMPLETED:
            return OperationResult.invalid_transition("This agreement has already been completed", allowed)

        expires_at = as_utc(agreement.expires_at)
        if expires_at is not None and expires_at < utcnow():
            return OperationResult.invalid_transition("This agreement has expired", [])

        if agreement.status != required:
            message = f"{action}. Current status: {agreement.status.value}."
            if hint:
                message = f"{message} {hint}"
            logger.warning("Refused public action on agreement %s: %s", agreement.id, message)
            return OperationResult.invalid_transition(message, allowed)
        return None
