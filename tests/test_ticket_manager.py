"""Tests for TicketManager against a mocked DynamoDB store."""
import uuid
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from processor.errors import AlreadyCheckedIn, NotFound, UpstreamError, ValidationError
from processor.models import FormEvent, Ticket, TicketEmail
from processor.ticket_manager import TicketManager


@pytest.fixture
def email_sender():
    sender = Mock()
    sender.send_ticket_email.return_value = 'message-id'
    return sender


@pytest.fixture
def qr_generator():
    return Mock(return_value='data:image/png;base64,AAAA')


@pytest.fixture
def manager(store, qr_generator, email_sender):
    return TicketManager(
        store=store,
        qr_generator=qr_generator,
        email_sender=email_sender,
        default_event_title='Youth Alive Event'
    )


def make_ticket(event_id, name, email, invoice_no=None):
    return Ticket(
        ticket_id=uuid.uuid4().hex,
        invoice_no=invoice_no or uuid.uuid4().hex[:8],
        user_id='user-1',
        event_id=event_id,
        name=name,
        email=email
    )


class TestProcessSubmission:

    def test_creates_event_user_and_ticket(self, manager, store, submission,
                                           email_sender, qr_generator):
        outcome = manager.process_submission(submission)

        assert outcome.created is True
        assert outcome.email_sent is True
        ticket = outcome.ticket
        assert ticket.invoice_no == '1001'
        assert ticket.quantity == 2
        assert ticket.total_amount == 10.0
        assert ticket.checked_in is False

        event = store.get_event('240001')
        assert event.title == 'Youth Alive Event'
        assert ticket.event_id == event.event_id

        user = store.get_user('jane.doe@example.com')
        assert ticket.user_id == user.user_id
        assert user.password_hash.startswith('$argon2')

        qr_generator.assert_called_once_with('1001')
        sent = email_sender.send_ticket_email.call_args[0][0]
        assert isinstance(sent, TicketEmail)
        assert sent.to == 'jane.doe@example.com'
        assert sent.event_title == 'Youth Alive Event'
        assert sent.qr_data_url == 'data:image/png;base64,AAAA'

    def test_event_name_used_for_new_event(self, manager, store, submission):
        submission.event_name = 'Stadium 24'
        manager.process_submission(submission)
        assert store.get_event('240001').title == 'Stadium 24'

    def test_existing_event_and_user_are_reused(self, manager, store, submission):
        first = manager.process_submission(submission).ticket
        submission.invoice_no = '1002'
        second = manager.process_submission(submission).ticket

        assert first.event_id == second.event_id
        assert first.user_id == second.user_id

    def test_idempotent_on_invoice_number(self, manager, store, submission,
                                          email_sender):
        first = manager.process_submission(submission)
        second = manager.process_submission(submission)

        assert second.created is False
        assert second.ticket.ticket_id == first.ticket.ticket_id
        assert email_sender.send_ticket_email.call_count == 1
        assert len(store.query_event_tickets(first.ticket.event_id)) == 1

    def test_concurrent_insert_loses_race_quietly(self, manager, store, submission,
                                                  email_sender):
        """A stale 'not found' read still yields one ticket and one email."""
        first = manager.process_submission(submission)

        with patch.object(
            store, 'get_ticket_by_invoice',
            side_effect=[None, first.ticket]
        ):
            second = manager.process_submission(submission)

        assert second.created is False
        assert second.ticket.ticket_id == first.ticket.ticket_id
        assert email_sender.send_ticket_email.call_count == 1

    def test_email_failure_keeps_ticket(self, manager, store, submission,
                                        email_sender):
        email_sender.send_ticket_email.side_effect = UpstreamError('SES rejected')

        outcome = manager.process_submission(submission)

        assert outcome.created is True
        assert outcome.email_sent is False
        assert outcome.notification_error == 'SES rejected'
        assert store.get_ticket_by_invoice('1001') is not None

    def test_qr_failure_keeps_ticket(self, manager, store, submission,
                                     qr_generator, email_sender):
        qr_generator.side_effect = RuntimeError('encoder exploded')

        outcome = manager.process_submission(submission)

        assert outcome.created is True
        assert 'encoder exploded' in outcome.notification_error
        email_sender.send_ticket_email.assert_not_called()

    @pytest.mark.parametrize('field', ['email', 'form_id', 'invoice_no'])
    def test_missing_required_field(self, manager, submission, field):
        setattr(submission, field, '')

        with pytest.raises(ValidationError) as exc_info:
            manager.process_submission(submission)

        assert exc_info.value.received == {
            'email': submission.email,
            'formId': submission.form_id,
            'invoiceNo': submission.invoice_no,
        }

    def test_falsy_quantity_defaults_to_one(self, manager, submission):
        submission.quantity = 0
        assert manager.process_submission(submission).ticket.quantity == 1


class TestCheckIn:

    @pytest.fixture
    def ticket(self, manager, submission):
        return manager.process_submission(submission).ticket

    def test_check_in_by_invoice(self, manager, ticket):
        checked = manager.check_in(invoice_no=ticket.invoice_no)

        assert checked.checked_in is True
        assert checked.check_in_time is not None

    def test_check_in_by_ticket_id(self, manager, ticket):
        checked = manager.check_in(ticket_id=ticket.ticket_id)
        assert checked.ticket_id == ticket.ticket_id
        assert checked.checked_in is True

    def test_second_check_in_is_conflict(self, manager, ticket):
        first = manager.check_in(invoice_no=ticket.invoice_no)

        with pytest.raises(AlreadyCheckedIn) as exc_info:
            manager.check_in(invoice_no=ticket.invoice_no)

        assert exc_info.value.check_in_time == first.check_in_time
        assert exc_info.value.name == 'Jane Doe'
        assert 'Jane Doe has already been checked in' in exc_info.value.message

    def test_concurrent_check_in_single_winner(self, manager, store, ticket):
        """The loser of a check-in race sees the winner's timestamp."""
        stale = store.get_ticket_by_invoice(ticket.invoice_no)
        winner = manager.check_in(invoice_no=ticket.invoice_no)

        with patch.object(
            store, 'get_ticket_by_invoice',
            side_effect=[stale, store.get_ticket_by_invoice(ticket.invoice_no)]
        ):
            with pytest.raises(AlreadyCheckedIn) as exc_info:
                manager.check_in(invoice_no=ticket.invoice_no)

        assert exc_info.value.check_in_time == winner.check_in_time

    def test_check_in_with_numeric_invoice(self, manager, ticket):
        checked = manager.check_in(invoice_no=1001)

        assert checked.ticket_id == ticket.ticket_id
        assert checked.checked_in is True

    def test_check_in_strips_whitespace(self, manager, ticket):
        assert manager.check_in(invoice_no=' 1001 ').checked_in is True

    def test_blank_invoice_requires_identifier(self, manager):
        with pytest.raises(ValidationError):
            manager.check_in(invoice_no='   ')

    def test_wrong_event_is_not_found(self, manager, ticket):
        with pytest.raises(NotFound) as exc_info:
            manager.check_in(invoice_no=ticket.invoice_no, event_id='other-event')

        assert 'different event' in exc_info.value.message
        assert manager.lookup_ticket(ticket.invoice_no).checked_in is False

    def test_matching_event_scope(self, manager, ticket):
        checked = manager.check_in(
            invoice_no=ticket.invoice_no, event_id=ticket.event_id
        )
        assert checked.checked_in is True

    def test_unknown_invoice(self, manager):
        with pytest.raises(NotFound) as exc_info:
            manager.check_in(invoice_no='nope')
        assert exc_info.value.message == 'Ticket not found'

    def test_unknown_ticket_id(self, manager):
        with pytest.raises(NotFound):
            manager.check_in(ticket_id=uuid.uuid4().hex)

    def test_requires_identifier(self, manager):
        with pytest.raises(ValidationError):
            manager.check_in()

    def test_invalid_ticket_id_format(self, manager):
        with pytest.raises(ValidationError) as exc_info:
            manager.check_in(ticket_id='not-a-ticket-id')
        assert exc_info.value.message == 'Invalid ticket ID format'


class TestLookupAndSearch:

    def test_lookup(self, manager, submission):
        ticket = manager.process_submission(submission).ticket
        found = manager.lookup_ticket('1001', event_id=ticket.event_id)
        assert found.ticket_id == ticket.ticket_id

    def test_lookup_with_numeric_invoice(self, manager, submission):
        ticket = manager.process_submission(submission).ticket
        assert manager.lookup_ticket(1001).ticket_id == ticket.ticket_id

    def test_lookup_wrong_event(self, manager, submission):
        manager.process_submission(submission)
        with pytest.raises(NotFound) as exc_info:
            manager.lookup_ticket('1001', event_id='other-event')
        assert 'verify the QR code' in exc_info.value.message

    def test_lookup_requires_invoice(self, manager):
        with pytest.raises(ValidationError):
            manager.lookup_ticket(None)

    def test_search_filters_by_event_and_query(self, manager, store):
        store.create_ticket(make_ticket('event-a', 'Zed Jane', 'zed@example.com'))
        store.create_ticket(make_ticket('event-a', 'Mary Smith', 'mary@JANE.org'))
        store.create_ticket(make_ticket('event-a', 'Bob Brown', 'bob@example.com'))
        store.create_ticket(make_ticket('event-b', 'Jane Other', 'jane@example.com'))

        results = manager.search_tickets('event-a', 'jane')

        assert [t.name for t in results] == ['Mary Smith', 'Zed Jane']

    def test_search_without_query_returns_all_sorted(self, manager, store):
        for name in ['Charlie', 'Alice', 'Bob']:
            store.create_ticket(make_ticket('event-a', name, f'{name}@example.com'))

        results = manager.search_tickets('event-a')

        assert [t.name for t in results] == ['Alice', 'Bob', 'Charlie']

    def test_search_is_capped(self, manager, store):
        for i in range(60):
            store.create_ticket(
                make_ticket('event-a', f'Guest {i:02d}', f'guest{i}@example.com')
            )

        results = manager.search_tickets('event-a', 'guest')

        assert len(results) == 50
        assert results[0].name == 'Guest 00'

    def test_search_requires_event(self, manager):
        with pytest.raises(ValidationError):
            manager.search_tickets('', 'jane')


class TestSyncEvents:

    def test_upserts_forms_and_keeps_event_id(self, manager, store):
        source = Mock()
        source.list_active_forms.return_value = [
            FormEvent('f2', 'Camp', datetime(2024, 3, 1, tzinfo=timezone.utc)),
            FormEvent('f1', 'Stadium 24', datetime(2024, 1, 1, tzinfo=timezone.utc)),
        ]

        first = manager.sync_events(source)
        source.list_active_forms.return_value[1].title = 'Stadium 24 (Updated)'
        second = manager.sync_events(source)

        assert [e.form_id for e in first] == ['f1', 'f2']
        assert first[0].end_time.startswith('2024-01-08')
        assert second[0].title == 'Stadium 24 (Updated)'
        assert second[0].event_id == first[0].event_id

    def test_upstream_failure_propagates(self, manager):
        source = Mock()
        source.list_active_forms.side_effect = UpstreamError('down')

        with pytest.raises(UpstreamError):
            manager.sync_events(source)
