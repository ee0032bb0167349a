"""
Field lock policy.

Once a client has accepted an agreement, the commercial terms they relied on
must not shift under them. Legitimate changes go through a CORRECTION audit
event instead of mutating the record.
"""
from typing import Any, Iterable, Mapping

from quoteledger.models.enums import AgreementStatus
from quoteledger.services.results import OperationResult

# Model attribute -> name used in API payloads and error messages
LOCKED_COMMERCIAL_FIELDS = {
    "total_price": "totalPrice",
    "deposit_amount": "depositAmount",
    "balance_due": "balanceDue",
    "currency": "currency",
    "work_included": "workIncluded",
    "work_excluded": "workExcluded",
}

# Editable regardless of lock state
UNLOCKED_FIELDS = {
    "title": "title",
    "client_name": "clientName",
    "client_email": "clientEmail",
    "expires_at": "expiresAt",
    "payment_instructions": "paymentInstructions",
    "external_payment_link": "externalPaymentLink",
    "cancellation_terms": "cancellationTerms",
    "governing_country": "governingCountry",
}

UPDATABLE_FIELDS = {**LOCKED_COMMERCIAL_FIELDS, **UNLOCKED_FIELDS}


def is_locked(agreement: Any) -> bool:
    """Anything with .status and .locked_at - an Agreement or a partial row."""
    return agreement.status != AgreementStatus.DRAFT and agreement.locked_at is not None


def locked_fields_touched(field_names: Iterable[str]) -> list:
    touched = set(field_names)
    return [wire for name, wire in LOCKED_COMMERCIAL_FIELDS.items() if name in touched]


def validate_update(agreement: Any, proposed_changes: Mapping[str, Any]) -> OperationResult:
    """Reject changes to commercial fields on a locked agreement, naming each one."""
    if not is_locked(agreement):
        return OperationResult.ok()

    offending = locked_fields_touched(proposed_changes.keys())
    if offending:
        return OperationResult.locked(offending)
    return OperationResult.ok()
