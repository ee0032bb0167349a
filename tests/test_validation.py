"""
Tests for agreement creation and input validation.

The price split is checked both by the request schema and by the service,
so neither path can store an agreement whose deposit and balance do not
add up to the total.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from quoteledger.api.schemas import AgreementCreate, AgreementUpdate
from quoteledger.models.enums import AgreementStatus
from quoteledger.services.agreement_service import AgreementService
from quoteledger.services.results import ErrorCode
from quoteledger.utils.money import split_matches_total, to_amount
from quoteledger.utils.slugs import is_valid_public_slug

BASE_PAYLOAD = {
    "title": "Garden fence",
    "workIncluded": "20m closeboard fence",
    "workExcluded": "Removal of old fence",
    "depositAmount": "30.00",
    "cancellationTerms": "None",
}


class TestPriceSplit:

    def test_split_one_short_fails(self):
        """INVARIANT: total 100.00 with 30.00 + 69.00 fails validation."""
        assert not split_matches_total(Decimal("100.00"), Decimal("30.00"), Decimal("69.00"))
        with pytest.raises(ValidationError):
            AgreementCreate(**BASE_PAYLOAD, totalPrice="100.00", balanceDue="69.00")

    def test_exact_split_passes(self):
        """INVARIANT: total 100.00 with 30.00 + 70.00 passes."""
        assert split_matches_total(Decimal("100.00"), Decimal("30.00"), Decimal("70.00"))
        data = AgreementCreate(**BASE_PAYLOAD, totalPrice="100.00", balanceDue="70.00")
        assert data.total_price == Decimal("100.00")

    def test_float_amounts_are_not_binary_noise(self):
        assert to_amount(0.1) + to_amount(0.2) == to_amount("0.30")
        assert split_matches_total(100.0, 30.1, 69.9)

    def test_service_rejects_bad_split(self, db_session, contractor, agreement_fields):
        agreement_fields["balance_due"] = Decimal("699.00")

        result = AgreementService(db_session).create_agreement(contractor.id, agreement_fields)

        assert result.code == ErrorCode.VALIDATION_ERROR
        assert result.error == "Deposit amount + balance due must equal total price"

    @pytest.mark.parametrize("field, value, message", [
        ("total_price", Decimal("0"), "Total price must be positive"),
        ("deposit_amount", Decimal("-1"), "Deposit amount cannot be negative"),
        ("balance_due", Decimal("-1"), "Balance due cannot be negative"),
    ])
    def test_service_rejects_bad_amounts(self, db_session, contractor, agreement_fields, field, value, message):
        agreement_fields[field] = value

        result = AgreementService(db_session).create_agreement(contractor.id, agreement_fields)

        assert result.error == message


class TestCreateAgreement:

    def test_new_agreement_is_draft_with_public_slug(self, draft_agreement):
        assert draft_agreement.status == AgreementStatus.DRAFT
        assert draft_agreement.locked_at is None
        assert is_valid_public_slug(draft_agreement.public_slug)

    def test_profile_defaults_fill_gaps(self, draft_agreement, contractor):
        assert draft_agreement.currency == "GBP"
        assert draft_agreement.payment_instructions == contractor.default_payment_instructions
        assert draft_agreement.governing_country == "United Kingdom"

    def test_missing_required_fields_named(self, db_session, free_contractor, agreement_fields):
        # free_contractor has no default payment instructions
        result = AgreementService(db_session).create_agreement(free_contractor.id, agreement_fields)

        assert result.code == ErrorCode.VALIDATION_ERROR
        assert "paymentInstructions" in result.error

    def test_unknown_user(self, db_session, agreement_fields):
        result = AgreementService(db_session).create_agreement("nobody", agreement_fields)
        assert result.code == ErrorCode.NOT_FOUND

    def test_slugs_are_unique(self, db_session, contractor, agreement_fields):
        service = AgreementService(db_session)
        slugs = {service.create_agreement(contractor.id, agreement_fields).data.public_slug for _ in range(10)}
        assert len(slugs) == 10

    def test_status_cannot_be_chosen_at_creation(self, db_session, contractor, agreement_fields):
        agreement_fields["status"] = AgreementStatus.ACCEPTED

        result = AgreementService(db_session).create_agreement(contractor.id, agreement_fields)

        assert result.code == ErrorCode.VALIDATION_ERROR


class TestSchemas:

    def test_update_only_carries_sent_keys(self):
        update = AgreementUpdate(cancellationTerms="14 days notice")
        assert update.to_fields() == {"cancellation_terms": "14 days notice"}

    def test_currency_must_be_three_letters(self):
        with pytest.raises(ValidationError):
            AgreementCreate(**BASE_PAYLOAD, totalPrice="100.00", balanceDue="70.00", currency="POUND")

    def test_payment_link_must_be_url(self):
        with pytest.raises(ValidationError):
            AgreementUpdate(externalPaymentLink="not a url")
