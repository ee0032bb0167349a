"""
Agreement creation, lookup and the safe update gateway.

Direct (non-status) edits MUST go through update_safely so the field lock
policy is consulted before anything is written.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from quoteledger.config import settings
from quoteledger.models.domain import Agreement, User
from quoteledger.models.enums import AgreementStatus, AuditActor, AuditEventType
from quoteledger.request_context import RequestContext
from quoteledger.services import field_lock
from quoteledger.services.audit_log import AuditLog
from quoteledger.services.results import OperationResult
from quoteledger.services.usage import UsageTracker
from quoteledger.utils.clock import utcnow
from quoteledger.utils.money import split_matches_total, to_amount
from quoteledger.utils.slugs import generate_public_slug

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("total_price", "deposit_amount", "balance_due")

REQUIRED_TEXT_FIELDS = (
    "title",
    "work_included",
    "work_excluded",
    "payment_instructions",
    "cancellation_terms",
    "governing_country",
)

SPLIT_MISMATCH = "Deposit amount + balance due must equal total price"


def _check_amounts(total_price, deposit_amount, balance_due) -> Optional[str]:
    if to_amount(total_price) <= 0:
        return "Total price must be positive"
    if to_amount(deposit_amount) < 0:
        return "Deposit amount cannot be negative"
    if to_amount(balance_due) < 0:
        return "Balance due cannot be negative"
    if not split_matches_total(total_price, deposit_amount, balance_due):
        return SPLIT_MISMATCH
    return None


def _normalise(fields: Dict[str, Any]) -> Dict[str, Any]:
    values = dict(fields)
    for name in PRICE_FIELDS:
        if values.get(name) is not None:
            values[name] = to_amount(values[name])
    if values.get("currency"):
        values["currency"] = values["currency"].upper()
    return values


class AgreementService:
    """Creates agreements and applies non-status edits."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLog(db)
        self.usage = UsageTracker(db)

    def create_agreement(
        self,
        user_id: str,
        fields: Dict[str, Any],
        context: Optional[RequestContext] = None,
    ) -> OperationResult:
        """
        Create a DRAFT agreement for a contractor.

        Fills currency, payment instructions and governing country from the
        contractor's profile when omitted, enforces the monthly plan limit,
        and writes the CREATED event in the same transaction.
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            return OperationResult.not_found("User not found")

        unknown = sorted(set(fields) - set(field_lock.UPDATABLE_FIELDS))
        if unknown:
            return OperationResult.invalid(f"Unknown agreement fields: {', '.join(unknown)}")

        values = _normalise(fields)
        values["currency"] = values.get("currency") or user.default_currency or settings.DEFAULT_CURRENCY
        if not values.get("payment_instructions"):
            values["payment_instructions"] = user.default_payment_instructions
        if not values.get("governing_country"):
            values["governing_country"] = user.country

        missing = [name for name in REQUIRED_TEXT_FIELDS if not values.get(name)]
        if missing:
            return OperationResult.invalid(
                "Missing required fields: " + ", ".join(field_lock.UPDATABLE_FIELDS[m] for m in missing)
            )
        if any(values.get(name) is None for name in PRICE_FIELDS):
            return OperationResult.invalid("totalPrice, depositAmount and balanceDue are required")
        problem = _check_amounts(values["total_price"], values["deposit_amount"], values["balance_due"])
        if problem:
            return OperationResult.invalid(problem)

        limit_message = self.usage.limit_reached_message(user)
        if limit_message:
            self.db.rollback()
            return OperationResult.plan_limit(limit_message)

        try:
            agreement = Agreement(
                user_id=user.id,
                public_slug=generate_public_slug(),
                status=AgreementStatus.DRAFT,
                **values,
            )
            self.db.add(agreement)
            self.db.flush()

            self.usage.increment(user.id)
            self.audit.append(
                agreement.id,
                AuditActor.CONTRACTOR,
                AuditEventType.CREATED,
                {"title": agreement.title},
                context=context,
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(agreement)
        logger.info("Created agreement %s (%s) for user %s", agreement.id, agreement.title, user.id)
        return OperationResult.ok(agreement)

    def update_safely(
        self,
        agreement_id: str,
        fields: Dict[str, Any],
        actor: AuditActor,
        context: Optional[RequestContext] = None,
    ) -> OperationResult:
        """
        Apply a partial edit, respecting locked commercial fields.

        Refusals never touch storage. The UPDATED event lists field names
        only; superseded commercial values are not copied into the log.
        """
        if not fields:
            return OperationResult.invalid("No fields to update")

        unknown = sorted(set(fields) - set(field_lock.UPDATABLE_FIELDS))
        if unknown:
            return OperationResult.invalid(f"Unknown agreement fields: {', '.join(unknown)}")

        current = self.db.query(
            Agreement.status,
            Agreement.locked_at,
            Agreement.total_price,
            Agreement.deposit_amount,
            Agreement.balance_due,
        ).filter(Agreement.id == agreement_id).first()
        if current is None:
            return OperationResult.not_found()

        verdict = field_lock.validate_update(current, fields)
        if not verdict.success:
            logger.warning("Refused update of locked fields %s on agreement %s", verdict.locked_fields, agreement_id)
            return verdict

        values = _normalise(fields)
        for name in REQUIRED_TEXT_FIELDS + ("currency",):
            if name in values and not values[name]:
                return OperationResult.invalid(f"{field_lock.UPDATABLE_FIELDS[name]} cannot be empty")
        if any(name in values for name in PRICE_FIELDS):
            merged = {name: values.get(name, getattr(current, name)) for name in PRICE_FIELDS}
            if any(merged[name] is None for name in PRICE_FIELDS):
                return OperationResult.invalid("totalPrice, depositAmount and balanceDue cannot be empty")
            problem = _check_amounts(merged["total_price"], merged["deposit_amount"], merged["balance_due"])
            if problem:
                return OperationResult.invalid(problem)

        # Only write if the lock state we validated against still holds
        conditions = [Agreement.id == agreement_id, Agreement.status == current.status]
        if current.locked_at is None:
            conditions.append(Agreement.locked_at.is_(None))

        try:
            result = self.db.execute(
                update(Agreement)
                .where(*conditions)
                .values(updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                return OperationResult.conflict(
                    "Agreement changed while it was being edited. Reload and try again."
                )

            updated_fields = [field_lock.UPDATABLE_FIELDS[name] for name in fields]
            self.audit.append(
                agreement_id,
                actor,
                AuditEventType.UPDATED,
                {"updatedFields": updated_fields},
                context=context,
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Updated agreement %s fields %s", agreement_id, updated_fields)
        return OperationResult.ok()

    def get_for_owner(self, agreement_id: str, user_id: str) -> Optional[Agreement]:
        return self.db.query(Agreement).populate_existing().filter(
            Agreement.id == agreement_id,
            Agreement.user_id == user_id
        ).first()

    def get_by_slug(self, public_slug: str) -> Optional[Agreement]:
        return self.db.query(Agreement).populate_existing().filter(
            Agreement.public_slug == public_slug
        ).first()

    def list_for_owner(self, user_id: str, status: Optional[AgreementStatus] = None) -> List[Agreement]:
        query = self.db.query(Agreement).filter(Agreement.user_id == user_id)
        if status is not None:
            query = query.filter(Agreement.status == status)
        return query.order_by(Agreement.created_at.desc()).all()
