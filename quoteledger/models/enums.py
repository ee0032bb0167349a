"""Enums for quote-ledger - these define the valid values for statuses, actors and events."""
from enum import Enum


class AgreementStatus(str, Enum):
    """Lifecycle of an agreement. COMPLETED and CANCELLED are terminal."""
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    DEPOSIT_SENT = "DEPOSIT_SENT"
    DEPOSIT_RECEIVED = "DEPOSIT_RECEIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AuditActor(str, Enum):
    """Who performed an audited action."""
    CLIENT = "CLIENT"
    CONTRACTOR = "CONTRACTOR"
    SYSTEM = "SYSTEM"


class AuditEventType(str, Enum):
    """Everything that can appear on an agreement's timeline."""
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    SENT = "SENT"
    VIEWED = "VIEWED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    DEPOSIT_SENT = "DEPOSIT_SENT"
    DEPOSIT_RECEIVED = "DEPOSIT_RECEIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    CORRECTION = "CORRECTION"
    STATUS_REVERTED = "STATUS_REVERTED"


class CorrectionType(str, Enum):
    """Kinds of after-the-fact corrections a party can record."""
    PRICE_ADJUSTMENT = "PRICE_ADJUSTMENT"
    SCOPE_CHANGE = "SCOPE_CHANGE"
    TERM_CHANGE = "TERM_CHANGE"
    DATE_CHANGE = "DATE_CHANGE"
    OTHER = "OTHER"


class UserPlan(str, Enum):
    FREE = "FREE"
    SOLO = "SOLO"
    BUSINESS = "BUSINESS"
