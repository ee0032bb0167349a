"""API routes for contractors (dashboard) and clients (public link)."""
import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from quoteledger.api.deps import get_current_user_id, get_rate_limiter, get_request_context
from quoteledger.api.schemas import (
    AcceptAgreement,
    ActionResponse,
    AgreementCreate,
    AgreementDetailResponse,
    AgreementResponse,
    AgreementUpdate,
    AllowedTransitionsResponse,
    AuditEventResponse,
    ConfirmDepositSent,
    CorrectionCreate,
    FailureResponse,
    PublicAgreementResponse,
    StatusChange,
    StatusRevert,
    TimelineEntry,
    UsageResponse,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from quoteledger.config import settings
from quoteledger.database import get_db
from quoteledger.models.domain import Agreement, User
from quoteledger.models.enums import AgreementStatus, AuditActor
from quoteledger.request_context import RequestContext
from quoteledger.services.agreement_service import AgreementService
from quoteledger.services.audit_log import AuditLog
from quoteledger.services.public_actions import PublicAgreementActions
from quoteledger.services.rate_limit import RateLimiter
from quoteledger.services.results import ErrorCode, OperationResult
from quoteledger.services.state_machine import StateMachine, get_allowed_transitions
from quoteledger.services.usage import UsageTracker
from quoteledger.utils.slugs import is_valid_public_slug

logger = logging.getLogger(__name__)

router = APIRouter()

FAILURE_STATUS = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.LOCKED_FIELD_VIOLATION: status.HTTP_409_CONFLICT,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.PLAN_LIMIT: status.HTTP_403_FORBIDDEN,
}

REFUSALS = {
    404: {"model": FailureResponse, "description": "Agreement not found"},
    409: {"model": FailureResponse, "description": "Refusal - transition not allowed or fields locked"},
}


def raise_for_failure(result: OperationResult) -> None:
    """Turn a refused operation into an HTTP error carrying the structured reason."""
    if result.success:
        return
    raise HTTPException(
        status_code=FAILURE_STATUS.get(result.code, status.HTTP_400_BAD_REQUEST),
        detail=result.to_dict(),
    )


def _owned_agreement(db: Session, agreement_id: str, user_id: str) -> Agreement:
    agreement = AgreementService(db).get_for_owner(agreement_id, user_id)
    if not agreement:
        raise_for_failure(OperationResult.not_found())
    return agreement


def _detail(db: Session, agreement: Agreement) -> AgreementDetailResponse:
    response = AgreementDetailResponse.model_validate(agreement)
    response.allowed_transitions = get_allowed_transitions(agreement.status)
    response.audit_events = [
        AuditEventResponse.model_validate(e)
        for e in AuditLog(db).list_for_agreement(agreement.id, limit=settings.AUDIT_DISPLAY_LIMIT)
    ]
    return response


def _public(db: Session, agreement: Agreement) -> PublicAgreementResponse:
    response = PublicAgreementResponse.model_validate(agreement)
    response.timeline = [
        TimelineEntry.model_validate(e)
        for e in AuditLog(db).list_for_agreement(agreement.id, limit=settings.AUDIT_DISPLAY_LIMIT)
    ]
    return response


def _check_rate_limit(limiter: RateLimiter, context: RequestContext, action: str) -> None:
    decision = limiter.check(context.ip_address, action)
    if not decision.allowed:
        retry_after = max(1, math.ceil(decision.reset_at - limiter.clock()))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"success": False, "error": "Too many requests. Please try again later."},
            headers={"Retry-After": str(retry_after)},
        )


# Contractor profile endpoints
@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(user_data: UserCreate, db: Session = Depends(get_db)):
    """Register a contractor profile (identity itself is managed upstream)."""
    if db.query(User).filter(User.email == user_data.email).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = User(**user_data.model_dump())
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered contractor %s", user.id)
    return user


@router.patch("/users/me", response_model=UserResponse)
def update_user(
    changes: UserUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Update the profile defaults used for new agreements. Existing agreements keep their terms."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    values = changes.model_dump(exclude_unset=True)
    if values.get("default_currency"):
        values["default_currency"] = values["default_currency"].upper()
    for field, value in values.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    logger.info("Updated profile for contractor %s: %s", user.id, ", ".join(sorted(values)))
    return user


@router.get("/users/me/usage", response_model=UsageResponse)
def get_usage(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Agreements created this month against the plan limit."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    usage = UsageTracker(db).current(user)
    db.commit()
    return usage


# Agreement endpoints
@router.post("/agreements", response_model=AgreementResponse, status_code=status.HTTP_201_CREATED, responses={
    403: {"model": FailureResponse, "description": "Refusal - monthly plan limit reached"}
})
def create_agreement(
    agreement_data: AgreementCreate,
    user_id: str = Depends(get_current_user_id),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Create a new agreement in DRAFT."""
    result = AgreementService(db).create_agreement(user_id, agreement_data.to_fields(), context=context)
    raise_for_failure(result)
    return result.data


@router.get("/agreements", response_model=List[AgreementResponse])
def list_agreements(
    status_filter: Optional[AgreementStatus] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """List the contractor's agreements, newest first."""
    return AgreementService(db).list_for_owner(user_id, status_filter)


@router.get("/agreements/{agreement_id}", response_model=AgreementDetailResponse, responses=REFUSALS)
def get_agreement(agreement_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Agreement with its timeline and the status changes currently possible."""
    return _detail(db, _owned_agreement(db, agreement_id, user_id))


@router.patch("/agreements/{agreement_id}", response_model=AgreementResponse, responses=REFUSALS)
def update_agreement(
    agreement_id: str,
    update_data: AgreementUpdate,
    user_id: str = Depends(get_current_user_id),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """
    Edit an agreement.

    WILL REFUSE changes to totalPrice, depositAmount, balanceDue, currency,
    workIncluded or workExcluded once the client has accepted.
    """
    _owned_agreement(db, agreement_id, user_id)
    result = AgreementService(db).update_safely(
        agreement_id, update_data.to_fields(), AuditActor.CONTRACTOR, context=context
    )
    raise_for_failure(result)
    return _owned_agreement(db, agreement_id, user_id)


@router.post("/agreements/{agreement_id}/status", response_model=AgreementResponse, responses=REFUSALS)
def change_status(
    agreement_id: str,
    change: StatusChange,
    user_id: str = Depends(get_current_user_id),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """
    Move an agreement along its lifecycle.

    A refusal lists the statuses that are allowed from here.
    """
    _owned_agreement(db, agreement_id, user_id)
    result = StateMachine(db).transition(
        agreement_id, change.status, AuditActor.CONTRACTOR, change.metadata, context=context
    )
    raise_for_failure(result)
    return _owned_agreement(db, agreement_id, user_id)


@router.post("/agreements/{agreement_id}/revert", response_model=AgreementResponse, responses=REFUSALS)
def revert_status(
    agreement_id: str,
    revert: StatusRevert,
    user_id: str = Depends(get_current_user_id),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Step back one stage after a mistaken status change. Logged as STATUS_REVERTED."""
    _owned_agreement(db, agreement_id, user_id)
    result = StateMachine(db).revert_status(
        agreement_id, revert.status, AuditActor.CONTRACTOR, revert.reason, context=context
    )
    raise_for_failure(result)
    return _owned_agreement(db, agreement_id, user_id)


@router.post(
    "/agreements/{agreement_id}/corrections",
    response_model=ActionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def add_correction(
    agreement_id: str,
    correction: CorrectionCreate,
    user_id: str = Depends(get_current_user_id),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """
    Record a correction on the timeline.
    The agreement itself is not modified and no earlier event is touched.
    """
    _owned_agreement(db, agreement_id, user_id)
    result = StateMachine(db).record_correction(
        agreement_id,
        AuditActor.CONTRACTOR,
        correction.correction_type,
        correction.description,
        affected_fields=correction.affected_fields,
        new_values=correction.new_values,
        context=context,
    )
    raise_for_failure(result)
    return ActionResponse(message="Correction recorded")


@router.get("/agreements/{agreement_id}/audit-events", response_model=List[AuditEventResponse], responses=REFUSALS)
def list_audit_events(agreement_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """The full timeline, oldest first."""
    _owned_agreement(db, agreement_id, user_id)
    return AuditLog(db).list_for_agreement(agreement_id)


@router.get("/statuses/{current_status}/allowed-transitions", response_model=AllowedTransitionsResponse)
def allowed_transitions(current_status: AgreementStatus):
    return AllowedTransitionsResponse(
        status=current_status, allowed_transitions=get_allowed_transitions(current_status)
    )


# Public endpoints - the slug is the only credential
def _require_slug(public_slug: str) -> str:
    if not is_valid_public_slug(public_slug):
        raise_for_failure(OperationResult.not_found())
    return public_slug


@router.get("/q/{public_slug}", response_model=PublicAgreementResponse, responses=REFUSALS)
def view_public_agreement(
    public_slug: str,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """What the client sees. Each view is recorded."""
    result = PublicAgreementActions(db).view(_require_slug(public_slug), context=context)
    raise_for_failure(result)
    return _public(db, result.data)


@router.post("/q/{public_slug}/accept", response_model=ActionResponse, responses={
    **REFUSALS,
    429: {"description": "Too many requests from this address"},
})
def accept_agreement(
    public_slug: str,
    acceptance: AcceptAgreement,
    context: RequestContext = Depends(get_request_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
    db: Session = Depends(get_db),
):
    """
    Client acknowledges the agreement.

    WILL REFUSE if the agreement is cancelled, completed, expired or not SENT.
    """
    _check_rate_limit(limiter, context, "accept")
    result = PublicAgreementActions(db).accept(
        _require_slug(public_slug), acceptance.acknowledged_by, acceptance.email, context=context
    )
    raise_for_failure(result)
    return ActionResponse(message="Agreement accepted successfully")


@router.post("/q/{public_slug}/deposit-sent", response_model=ActionResponse, responses={
    **REFUSALS,
    429: {"description": "Too many requests from this address"},
})
def confirm_deposit_sent(
    public_slug: str,
    confirmation: ConfirmDepositSent,
    context: RequestContext = Depends(get_request_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
    db: Session = Depends(get_db),
):
    """Client records that the deposit has been sent. Nothing here verifies payment."""
    _check_rate_limit(limiter, context, "deposit")
    result = PublicAgreementActions(db).confirm_deposit_sent(
        _require_slug(public_slug), confirmation.transaction_reference, context=context
    )
    raise_for_failure(result)
    return ActionResponse(message="Deposit confirmation recorded")
