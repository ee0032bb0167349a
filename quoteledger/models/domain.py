"""Domain models - contractors, their agreements, and monthly usage counters."""
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from quoteledger.database import Base
from quoteledger.models.enums import AgreementStatus, UserPlan
from quoteledger.utils.clock import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    The contractor issuing agreements.

    Authentication lives outside this service; a User row only carries the
    profile defaults and the plan that governs monthly creation limits.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False, unique=True)
    business_name = Column(String(255), nullable=True)
    country = Column(String(100), nullable=True)
    plan = Column(SQLEnum(UserPlan), nullable=False, default=UserPlan.FREE)
    default_currency = Column(String(3), nullable=True)
    default_payment_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    agreements = relationship("Agreement", back_populates="user")


class Agreement(Base):
    """
    A quote/contract record: DRAFT → SENT → ACCEPTED → DEPOSIT_SENT →
    DEPOSIT_RECEIVED → IN_PROGRESS → COMPLETED, or CANCELLED along the way.

    Invariants enforced here:
    - deposit_amount + balance_due == total_price (checked at the service layer)
    - locked_at is set once, when the agreement is first ACCEPTED
    - Never deleted - retained as a legal record
    """
    __tablename__ = "agreements"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    public_slug = Column(String(64), nullable=False, unique=True, index=True)

    title = Column(String(255), nullable=False)
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)

    # Commercial terms - locked once accepted
    work_included = Column(Text, nullable=False)
    work_excluded = Column(Text, nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    deposit_amount = Column(Numeric(12, 2), nullable=False)
    balance_due = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")

    expires_at = Column(DateTime(timezone=True), nullable=True)
    payment_instructions = Column(Text, nullable=False)
    external_payment_link = Column(String(2048), nullable=True)
    cancellation_terms = Column(Text, nullable=False)
    governing_country = Column(String(100), nullable=False)

    status = Column(SQLEnum(AgreementStatus), nullable=False, default=AgreementStatus.DRAFT, index=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="agreements")
    audit_events = relationship(
        "AuditEvent",
        back_populates="agreement",
        order_by="(AuditEvent.created_at, AuditEvent.id)",
        passive_deletes="all",
    )


class MonthlyUsage(Base):
    """How many agreements a contractor created in a given calendar month."""
    __tablename__ = "monthly_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "year_month", name="uq_monthly_usage_user_month"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    year_month = Column(String(7), nullable=False)  # "YYYY-MM"
    created_count = Column(Integer, nullable=False, default=0)
