"""Pydantic schemas for request/response validation."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    HttpUrl,
    model_validator,
)
from pydantic.alias_generators import to_camel

from quoteledger.models.enums import (
    AgreementStatus,
    AuditActor,
    AuditEventType,
    CorrectionType,
    UserPlan,
)
from quoteledger.utils.money import split_matches_total


class CamelModel(BaseModel):
    """JSON uses camelCase (totalPrice), Python uses snake_case (total_price)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# User schemas
class UserCreate(CamelModel):
    email: EmailStr
    business_name: Optional[str] = Field(None, max_length=255)
    country: Optional[str] = Field(None, max_length=100)
    plan: UserPlan = UserPlan.FREE
    default_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    default_payment_instructions: Optional[str] = None


class UserUpdate(CamelModel):
    """Profile defaults applied to new agreements. Only fields sent are changed."""
    business_name: Optional[str] = Field(None, min_length=1, max_length=255)
    country: Optional[str] = Field(None, max_length=100)
    default_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    default_payment_instructions: Optional[str] = Field(None, max_length=5000)


class UserResponse(CamelModel):
    id: str
    email: str
    business_name: Optional[str]
    country: Optional[str]
    plan: UserPlan
    default_currency: Optional[str]
    default_payment_instructions: Optional[str]
    created_at: datetime


class UsageResponse(CamelModel):
    plan: UserPlan
    count: int
    limit: Optional[int]


# Agreement schemas
class AgreementCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    client_name: Optional[str] = Field(None, min_length=1, max_length=255)
    client_email: Optional[EmailStr] = None
    work_included: str = Field(..., min_length=1)
    work_excluded: str = Field(..., min_length=1)
    total_price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    deposit_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    balance_due: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    expires_at: Optional[datetime] = None
    payment_instructions: Optional[str] = Field(None, min_length=1)
    external_payment_link: Optional[HttpUrl] = None
    cancellation_terms: str = Field(..., min_length=1)
    governing_country: Optional[str] = Field(None, min_length=1, max_length=100)

    @model_validator(mode="after")
    def deposit_and_balance_make_up_total(self):
        if not split_matches_total(self.total_price, self.deposit_amount, self.balance_due):
            raise ValueError("Deposit amount + balance due must equal total price")
        return self

    def to_fields(self) -> Dict[str, Any]:
        fields = self.model_dump(exclude_unset=True)
        if fields.get("external_payment_link") is not None:
            fields["external_payment_link"] = str(fields["external_payment_link"])
        return fields


class AgreementUpdate(CamelModel):
    """Partial edit - only the keys present in the request are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    client_name: Optional[str] = Field(None, max_length=255)
    client_email: Optional[EmailStr] = None
    work_included: Optional[str] = Field(None, min_length=1)
    work_excluded: Optional[str] = Field(None, min_length=1)
    total_price: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    deposit_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    balance_due: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    expires_at: Optional[datetime] = None
    payment_instructions: Optional[str] = Field(None, min_length=1)
    external_payment_link: Optional[HttpUrl] = None
    cancellation_terms: Optional[str] = Field(None, min_length=1)
    governing_country: Optional[str] = Field(None, min_length=1, max_length=100)

    def to_fields(self) -> Dict[str, Any]:
        fields = self.model_dump(exclude_unset=True)
        if fields.get("external_payment_link") is not None:
            fields["external_payment_link"] = str(fields["external_payment_link"])
        return fields


class AgreementResponse(CamelModel):
    id: str
    user_id: str
    public_slug: str
    title: str
    client_name: Optional[str]
    client_email: Optional[str]
    work_included: str
    work_excluded: str
    total_price: Decimal
    deposit_amount: Decimal
    balance_due: Decimal
    currency: str
    expires_at: Optional[datetime]
    payment_instructions: str
    external_payment_link: Optional[str]
    cancellation_terms: str
    governing_country: str
    status: AgreementStatus
    locked_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class AuditEventResponse(CamelModel):
    id: int
    agreement_id: str
    actor: AuditActor
    type: AuditEventType
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("event_metadata", "metadata"),
        serialization_alias="metadata",
    )
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime


class AgreementDetailResponse(AgreementResponse):
    allowed_transitions: List[AgreementStatus] = []
    audit_events: List[AuditEventResponse] = []


# Public (client-facing) schemas - no owner id, no request fingerprints
class TimelineEntry(CamelModel):
    actor: AuditActor
    type: AuditEventType
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("event_metadata", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime


class PublicAgreementResponse(CamelModel):
    public_slug: str
    title: str
    client_name: Optional[str]
    work_included: str
    work_excluded: str
    total_price: Decimal
    deposit_amount: Decimal
    balance_due: Decimal
    currency: str
    expires_at: Optional[datetime]
    payment_instructions: str
    external_payment_link: Optional[str]
    cancellation_terms: str
    governing_country: str
    status: AgreementStatus
    locked_at: Optional[datetime]
    timeline: List[TimelineEntry] = []


class AcceptAgreement(CamelModel):
    acknowledged_by: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None


class ConfirmDepositSent(CamelModel):
    transaction_reference: Optional[str] = Field(None, max_length=255)


# Status schemas
class StatusChange(CamelModel):
    status: AgreementStatus
    metadata: Optional[Dict[str, Any]] = None


class StatusRevert(CamelModel):
    status: AgreementStatus
    reason: str = Field(..., min_length=1, max_length=1000)


class CorrectionCreate(CamelModel):
    correction_type: CorrectionType
    description: str = Field(..., min_length=1, max_length=2000)
    affected_fields: Optional[List[str]] = None
    new_values: Optional[Dict[str, Any]] = None


class AllowedTransitionsResponse(CamelModel):
    status: AgreementStatus
    allowed_transitions: List[AgreementStatus]


class ActionResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None


# Error response
class FailureResponse(BaseModel):
    """Body of a refused action (inside FastAPI's "detail")."""
    success: bool = False
    error: str
    code: str
    allowedTransitions: Optional[List[AgreementStatus]] = None
    lockedFields: Optional[List[str]] = None
