"""
Append-only audit log for agreements.

This is the only way AuditEvent rows are created. There is no
update or delete here; the model itself refuses both at flush time.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from quoteledger import request_context
from quoteledger.models.audit import AuditEvent
from quoteledger.models.domain import Agreement
from quoteledger.models.enums import AuditActor, AuditEventType
from quoteledger.request_context import RequestContext
from quoteledger.services.results import AgreementNotFoundError

logger = logging.getLogger(__name__)


class AuditLog:
    """Writes and reads the per-agreement timeline."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        agreement_id: str,
        actor: AuditActor,
        event_type: AuditEventType,
        metadata: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
        commit: bool = True,
    ) -> AuditEvent:
        """
        Append one immutable event to an agreement's timeline.

        Raises AgreementNotFoundError if the agreement does not exist.
        With commit=False the row joins the caller's transaction, which is
        how the state machine keeps status change and audit entry atomic.
        """
        exists = self.db.query(Agreement.id).filter(Agreement.id == agreement_id).first()
        if exists is None:
            raise AgreementNotFoundError(agreement_id)

        ambient = request_context.get_current()
        ip_address = context.ip_address if context else None
        user_agent = context.user_agent if context else None
        if ip_address is None and ambient is not None:
            ip_address = ambient.ip_address
        if user_agent is None and ambient is not None:
            user_agent = ambient.user_agent

        audit_event = AuditEvent(
            agreement_id=agreement_id,
            actor=actor,
            type=event_type,
            event_metadata=metadata or None,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(audit_event)

        if commit:
            self.db.commit()
            self.db.refresh(audit_event)
        else:
            self.db.flush()

        logger.info(
            "Audit %s by %s on agreement %s", event_type.value, actor.value, agreement_id
        )
        return audit_event

    def list_for_agreement(self, agreement_id: str, limit: Optional[int] = None) -> List[AuditEvent]:
        """
        All events for an agreement, oldest first.

        With a limit, only the most recent `limit` events are returned (still
        oldest first) - the timeline view caps what it loads.
        """
        query = self.db.query(AuditEvent).filter(AuditEvent.agreement_id == agreement_id)
        if limit is None:
            return query.order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc()).all()

        recent = query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
        recent.reverse()
        return recent
