"""
Tests for what a client can do through the public link.

Every client action is attributed to CLIENT, carries the request context,
and writes exactly one event per status change.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from quoteledger.models.audit import AuditEvent
from quoteledger.models.domain import Agreement
from quoteledger.models.enums import AgreementStatus, AuditActor, AuditEventType
from quoteledger.request_context import RequestContext
from quoteledger.services.audit_log import AuditLog
from quoteledger.services.public_actions import PublicAgreementActions
from quoteledger.services.results import ErrorCode
from quoteledger.services.state_machine import StateMachine
from quoteledger.utils.clock import utcnow

S = AgreementStatus
BROWSER = RequestContext(ip_address="203.0.113.7", user_agent="Mozilla/5.0 (iPhone)")


def _events(db_session, agreement_id, event_type):
    return db_session.query(AuditEvent).filter(
        AuditEvent.agreement_id == agreement_id,
        AuditEvent.type == event_type
    ).all()


def _reload(db_session, agreement_id):
    return db_session.query(Agreement).populate_existing().filter(Agreement.id == agreement_id).one()


class TestView:

    def test_view_records_client_event(self, db_session, draft_agreement):
        result = PublicAgreementActions(db_session).view(draft_agreement.public_slug, context=BROWSER)

        assert result.success
        assert result.data.id == draft_agreement.id
        viewed = _events(db_session, draft_agreement.id, AuditEventType.VIEWED)
        assert len(viewed) == 1
        assert viewed[0].actor == AuditActor.CLIENT
        assert viewed[0].ip_address == "203.0.113.7"

    def test_unknown_slug(self, db_session):
        result = PublicAgreementActions(db_session).view("x" * 24)
        assert result.code == ErrorCode.NOT_FOUND


class TestAccept:

    def test_accept_sent_agreement(self, db_session, draft_agreement, advance_to):
        advance_to(draft_agreement.id, S.SENT)

        result = PublicAgreementActions(db_session).accept(
            draft_agreement.public_slug, "Jordan Smith", "jordan.smith@example.com", context=BROWSER
        )

        assert result.success
        agreement = _reload(db_session, draft_agreement.id)
        assert agreement.status == S.ACCEPTED
        assert agreement.locked_at is not None
        assert agreement.client_name == "Jordan Smith"
        assert agreement.client_email == "jordan.smith@example.com"

    def test_acceptance_logged_exactly_once(self, db_session, draft_agreement, advance_to):
        advance_to(draft_agreement.id, S.SENT)

        PublicAgreementActions(db_session).accept(
            draft_agreement.public_slug, "Jordan Smith", "jordan.smith@example.com", context=BROWSER
        )

        accepted = _events(db_session, draft_agreement.id, AuditEventType.ACCEPTED)
        assert len(accepted) == 1
        assert accepted[0].actor == AuditActor.CLIENT
        assert accepted[0].user_agent == "Mozilla/5.0 (iPhone)"
        assert accepted[0].event_metadata == {
            "fromStatus": "SENT",
            "toStatus": "ACCEPTED",
            "acknowledgedBy": "Jordan Smith",
            "email": "jordan.smith@example.com",
        }

    def test_draft_cannot_be_accepted(self, db_session, draft_agreement):
        result = PublicAgreementActions(db_session).accept(draft_agreement.public_slug, "Jordan")

        assert result.code == ErrorCode.INVALID_TRANSITION
        assert result.error == "Agreement cannot be accepted. Current status: DRAFT."

    def test_cancelled_agreement_refused(self, db_session, draft_agreement):
        StateMachine(db_session).cancel(draft_agreement.id, AuditActor.CONTRACTOR)

        result = PublicAgreementActions(db_session).accept(draft_agreement.public_slug, "Jordan")

        assert result.error == "This agreement has been cancelled"

    def test_completed_agreement_refused(self, db_session, draft_agreement, advance_to):
        advance_to(draft_agreement.id, S.COMPLETED)

        result = PublicAgreementActions(db_session).accept(draft_agreement.public_slug, "Jordan")

        assert result.error == "This agreement has already been completed"

    def test_expired_agreement_refused(self, db_session, draft_agreement, advance_to):
        advance_to(draft_agreement.id, S.SENT)
        agreement = _reload(db_session, draft_agreement.id)
        agreement.expires_at = utcnow() - timedelta(days=1)
        db_session.commit()

        result = PublicAgreementActions(db_session).accept(draft_agreement.public_slug, "Jordan")

        assert result.code == ErrorCode.INVALID_TRANSITION
        assert result.error == "This agreement has expired"
        assert result.allowed_transitions == []
        assert _reload(db_session, draft_agreement.id).status == S.SENT

    def test_second_acceptance_refused(self, db_session, draft_agreement, advance_to):
        advance_to(draft_agreement.id, S.SENT)
        actions = PublicAgreementActions(db_session)
        assert actions.accept(draft_agreement.public_slug, "Jordan").success

        again = actions.accept(draft_agreement.public_slug, "Jordan")

        assert not again.success
        assert len(_events(db_session, draft_agreement.id, AuditEventType.ACCEPTED)) == 1

    def test_client_details_commit_with_the_acceptance(self, db_session, draft_agreement, advance_to, monkeypatch):
        """Client name and email are written only if the acceptance itself is."""
        advance_to(draft_agreement.id, S.SENT)

        def failing_append(self, *args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(AuditLog, "append", failing_append)

        with pytest.raises(RuntimeError):
            PublicAgreementActions(db_session).accept(
                draft_agreement.public_slug, "Jordan Smith", "jordan.smith@example.com"
            )

        agreement = _reload(db_session, draft_agreement.id)
        assert agreement.status == S.SENT
        assert agreement.client_name == "Jordan Client"
        assert agreement.client_email == "jordan@example.com"
        assert agreement.locked_at is None


class TestConfirmDepositSent:

    def test_records_agreed_deposit(self, db_session, draft_agreement, advance_to):
        advance_to(draft_agreement.id, S.ACCEPTED)

        result = PublicAgreementActions(db_session).confirm_deposit_sent(
            draft_agreement.public_slug, "BACS-2231", context=BROWSER
        )

        assert result.success
        assert _reload(db_session, draft_agreement.id).status == S.DEPOSIT_SENT
        events = _events(db_session, draft_agreement.id, AuditEventType.DEPOSIT_SENT)
        assert len(events) == 1
        assert events[0].actor == AuditActor.CLIENT
        assert Decimal(events[0].event_metadata["amount"]) == Decimal("300.00")
        assert events[0].event_metadata["transactionReference"] == "BACS-2231"

    def test_requires_acceptance_first(self, db_session, draft_agreement, advance_to):
        advance_to(draft_agreement.id, S.SENT)

        result = PublicAgreementActions(db_session).confirm_deposit_sent(draft_agreement.public_slug)

        assert result.code == ErrorCode.INVALID_TRANSITION
        assert result.error == (
            "Deposit cannot be confirmed. Current status: SENT. Agreement must be accepted first."
        )
        assert result.allowed_transitions == [S.ACCEPTED, S.CANCELLED]
