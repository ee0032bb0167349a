"""
Audit event model - the agreement timeline.

This model exists to provide an immutable, append-only record of every
status change, view, update and correction. It is the legal record the
client-facing timeline is rendered from.
"""
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, JSON, String, event
from sqlalchemy.orm import relationship

from quoteledger.database import Base
from quoteledger.models.enums import AuditActor, AuditEventType
from quoteledger.utils.clock import utcnow


class AuditLogImmutableError(Exception):
    """Raised when anything tries to update or delete a persisted audit event."""


class AuditEvent(Base):
    """
    Immutable audit event for an agreement.

    Invariants:
    - Once written, never edited or deleted (enforced at flush time below)
    - Append-only, ordered by created_at
    - Created only through services.audit_log.AuditLog
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_agreement_created", "agreement_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    agreement_id = Column(String(36), ForeignKey("agreements.id"), nullable=False)
    actor = Column(SQLEnum(AuditActor), nullable=False)
    type = Column(SQLEnum(AuditEventType), nullable=False, index=True)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    agreement = relationship("Agreement", back_populates="audit_events")


@event.listens_for(AuditEvent, "before_update")
def _refuse_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit event {target.id} is append-only and cannot be modified")


@event.listens_for(AuditEvent, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit event {target.id} is append-only and cannot be deleted")
