"""Unit tests for DynamoDB manager."""
import uuid
from decimal import Decimal

import pytest

from processor.models import Event, Ticket, User
from storage.dynamodb_manager import ConditionFailedError, DuplicateRecordError


@pytest.fixture
def sample_ticket():
    """Create a sample Ticket for testing."""
    return Ticket(
        ticket_id=uuid.uuid4().hex,
        invoice_no='5001',
        user_id='user-1',
        event_id='event-1',
        name='Test Guest',
        email='guest@example.com',
        phone='0400000000',
        quantity=3,
        product_details='General Admission (Amount: 5.00 AUD, Quantity: 3)',
        total_amount=15.5,
        created_at='2024-01-15T10:00:00+00:00'
    )


@pytest.fixture
def sample_event():
    return Event(
        event_id='event-1',
        form_id='240001',
        title='Stadium 24',
        start_time='2024-01-15T00:00:00+00:00',
        end_time='2024-01-22T00:00:00+00:00'
    )


def test_get_event_missing(store):
    assert store.get_event('nope') is None


def test_create_and_get_event(store, sample_event):
    store.create_event(sample_event)
    assert store.get_event('240001') == sample_event


def test_create_event_duplicate_form_id(store, sample_event):
    store.create_event(sample_event)
    with pytest.raises(DuplicateRecordError):
        store.create_event(sample_event)


def test_upsert_event_keeps_event_id(store, sample_event):
    store.create_event(sample_event)
    refreshed = Event(
        event_id='new-id',
        form_id='240001',
        title='Stadium 25',
        start_time=sample_event.start_time,
        end_time=sample_event.end_time
    )

    stored = store.upsert_event(refreshed)

    assert stored.event_id == 'event-1'
    assert stored.title == 'Stadium 25'


def test_upsert_event_creates_missing(store, sample_event):
    stored = store.upsert_event(sample_event)
    assert stored == sample_event


def test_create_user_unique_email(store):
    user = User(user_id='u1', email='a@example.com', password_hash='hash')
    store.create_user(user)

    with pytest.raises(DuplicateRecordError):
        store.create_user(User(user_id='u2', email='a@example.com', password_hash='x'))
    assert store.get_user('a@example.com').user_id == 'u1'


def test_create_ticket_round_trip(store, sample_ticket):
    store.create_ticket(sample_ticket)

    by_invoice = store.get_ticket_by_invoice('5001')
    by_id = store.get_ticket_by_id(sample_ticket.ticket_id)

    assert by_invoice == sample_ticket
    assert by_id == sample_ticket


def test_total_amount_stored_as_decimal(store, dynamodb_tables, sample_ticket):
    store.create_ticket(sample_ticket)

    item = dynamodb_tables.Table('test-tickets').get_item(
        Key={'invoice_no': '5001'}
    )['Item']

    assert item['total_amount'] == Decimal('15.5')
    assert 'check_in_time' not in item


def test_create_ticket_duplicate_invoice(store, sample_ticket):
    store.create_ticket(sample_ticket)
    duplicate = Ticket(
        ticket_id=uuid.uuid4().hex,
        invoice_no='5001',
        user_id='user-2',
        event_id='event-1',
        name='Someone Else',
        email='else@example.com'
    )

    with pytest.raises(DuplicateRecordError):
        store.create_ticket(duplicate)
    assert store.get_ticket_by_invoice('5001').name == 'Test Guest'


def test_mark_checked_in(store, sample_ticket):
    store.create_ticket(sample_ticket)

    updated = store.mark_checked_in('5001', '2024-01-20T09:00:00+00:00')

    assert updated.checked_in is True
    assert updated.check_in_time == '2024-01-20T09:00:00+00:00'


def test_mark_checked_in_twice_fails(store, sample_ticket):
    store.create_ticket(sample_ticket)
    store.mark_checked_in('5001', '2024-01-20T09:00:00+00:00')

    with pytest.raises(ConditionFailedError):
        store.mark_checked_in('5001', '2024-01-20T09:05:00+00:00')
    assert store.get_ticket_by_invoice('5001').check_in_time == (
        '2024-01-20T09:00:00+00:00'
    )


def test_mark_checked_in_wrong_event(store, sample_ticket):
    store.create_ticket(sample_ticket)

    with pytest.raises(ConditionFailedError):
        store.mark_checked_in('5001', '2024-01-20T09:00:00+00:00', event_id='other')
    assert store.get_ticket_by_invoice('5001').checked_in is False


def test_mark_checked_in_missing_ticket(store):
    with pytest.raises(ConditionFailedError):
        store.mark_checked_in('missing', '2024-01-20T09:00:00+00:00')


def test_query_event_tickets(store, sample_ticket):
    store.create_ticket(sample_ticket)
    other = Ticket(
        ticket_id=uuid.uuid4().hex,
        invoice_no='5002',
        user_id='user-1',
        event_id='event-2',
        name='Other Guest',
        email='other@example.com'
    )
    store.create_ticket(other)

    tickets = store.query_event_tickets('event-1')

    assert [t.invoice_no for t in tickets] == ['5001']
