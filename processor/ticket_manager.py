"""Ticket lifecycle: creation from submissions, lookup, search and check-in."""
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from passlib.hash import argon2

from processor.errors import (
    AlreadyCheckedIn,
    NotFound,
    TicketingError,
    UpstreamError,
    ValidationError,
)
from processor.models import (
    Event,
    ParsedSubmission,
    SubmissionOutcome,
    Ticket,
    TicketEmail,
    User,
)
from storage.dynamodb_manager import ConditionFailedError, DuplicateRecordError

logger = logging.getLogger(__name__)

EVENT_WINDOW = timedelta(days=7)
SEARCH_LIMIT = 50
NOT_FOUND_FOR_EVENT = (
    'Ticket not found for this event. This QR code may be for a different event.'
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def invoice_key(value) -> str:
    """Coerce a scanned invoice number (string or JSON number) to the stored key."""
    if value is None or isinstance(value, bool):
        return ''
    return str(value).strip()


def format_event_date(start_time: str) -> str:
    """Render an ISO start time as a date for the confirmation email."""
    try:
        return datetime.fromisoformat(start_time).strftime('%d %B %Y')
    except (TypeError, ValueError):
        return start_time


class TicketManager:
    """
    Manager for the ticket lifecycle.

    Storage provides the race-breakers: unique keys on form id, email and
    invoice number, and a conditional update for check-in.
    """

    def __init__(
        self,
        store,
        qr_generator: Callable[[str], str],
        email_sender,
        default_event_title: str = 'Youth Alive Event'
    ):
        """
        Args:
            store: DynamoDBManager or compatible store
            qr_generator: Callable returning a data URL for a text payload
            email_sender: Object with ``send_ticket_email(TicketEmail)``
            default_event_title: Title for events first seen in a webhook
        """
        self.store = store
        self.qr_generator = qr_generator
        self.email_sender = email_sender
        self.default_event_title = default_event_title

    def process_submission(self, parsed: ParsedSubmission) -> SubmissionOutcome:
        """
        Create the ticket for a normalized submission, at most once per invoice.

        Repeat deliveries for an invoice that already has a ticket return
        that ticket with ``created=False`` and trigger no email.

        Raises:
            ValidationError: If email, form id or invoice number is empty
        """
        if not parsed.email or not parsed.form_id or not parsed.invoice_no:
            logger.warning(
                "Missing required fields",
                extra={
                    'email_present': bool(parsed.email),
                    'form_id': parsed.form_id,
                    'invoice_no': parsed.invoice_no,
                }
            )
            raise ValidationError(
                'Invalid webhook data: missing required fields',
                received={
                    'email': parsed.email,
                    'formId': parsed.form_id,
                    'invoiceNo': parsed.invoice_no,
                }
            )

        event = self.resolve_event(parsed.form_id, parsed.event_name)
        user = self.resolve_user(parsed.email)

        existing = self.store.get_ticket_by_invoice(parsed.invoice_no)
        if existing:
            logger.info(
                f"Ticket already exists for invoice {parsed.invoice_no}, skipping"
            )
            return SubmissionOutcome(ticket=existing, created=False)

        ticket = Ticket(
            ticket_id=uuid.uuid4().hex,
            invoice_no=parsed.invoice_no,
            user_id=user.user_id,
            event_id=event.event_id,
            name=parsed.name,
            email=parsed.email,
            phone=parsed.phone,
            church=parsed.church,
            youth_ministry=parsed.youth_ministry,
            quantity=parsed.quantity or 1,
            product_details=parsed.product_details,
            total_amount=parsed.total_amount,
            created_at=utcnow().isoformat(),
        )

        try:
            self.store.create_ticket(ticket)
        except DuplicateRecordError:
            # Lost a race with a concurrent delivery of the same invoice.
            logger.info(
                f"Concurrent delivery created invoice {parsed.invoice_no} first"
            )
            stored = self.store.get_ticket_by_invoice(parsed.invoice_no)
            return SubmissionOutcome(ticket=stored or ticket, created=False)

        notification_error = self._send_confirmation(ticket, event, parsed)
        return SubmissionOutcome(
            ticket=ticket,
            created=True,
            notification_error=notification_error
        )

    def resolve_event(self, form_id: str, event_name: str = '') -> Event:
        """Find the event for a form, creating a placeholder if unseen."""
        event = self.store.get_event(form_id)
        if event:
            return event

        start = utcnow()
        event = Event(
            event_id=uuid.uuid4().hex,
            form_id=form_id,
            title=event_name or self.default_event_title,
            start_time=start.isoformat(),
            end_time=(start + EVENT_WINDOW).isoformat(),
        )
        try:
            return self.store.create_event(event)
        except DuplicateRecordError:
            return self.store.get_event(form_id)

    def resolve_user(self, email: str) -> User:
        """
        Find the user for an email, creating one if unseen.

        New users get a random password that is hashed and discarded; the
        account is reachable only through password reset.
        """
        user = self.store.get_user(email)
        if user:
            return user

        user = User(
            user_id=uuid.uuid4().hex,
            email=email,
            password_hash=argon2.hash(secrets.token_urlsafe(16)),
        )
        try:
            return self.store.create_user(user)
        except DuplicateRecordError:
            return self.store.get_user(email)

    def _send_confirmation(
        self,
        ticket: Ticket,
        event: Event,
        parsed: ParsedSubmission
    ) -> Optional[str]:
        """Generate the QR and send the email; return an error message on failure."""
        try:
            qr_data_url = self.qr_generator(ticket.invoice_no)
            self.email_sender.send_ticket_email(TicketEmail(
                to=ticket.email,
                name=ticket.name,
                event_title=event.title,
                event_date=parsed.event_date or format_event_date(event.start_time),
                invoice_no=ticket.invoice_no,
                qr_data_url=qr_data_url,
            ))
        except Exception as e:
            logger.error(
                f"Ticket {ticket.ticket_id} created but confirmation email "
                f"failed: {e}",
                extra={'invoice_no': ticket.invoice_no},
                exc_info=not isinstance(e, TicketingError)
            )
            if isinstance(e, UpstreamError):
                return e.message
            return str(e) or type(e).__name__
        return None

    def check_in(
        self,
        ticket_id: Optional[str] = None,
        invoice_no: Optional[str] = None,
        event_id: Optional[str] = None
    ) -> Ticket:
        """
        Check in a ticket by id or invoice number.

        Args:
            ticket_id: Ticket id, takes precedence over invoice_no
            invoice_no: Invoice number as encoded in the QR code
            event_id: Restrict the lookup to this event

        Returns:
            The checked-in Ticket

        Raises:
            ValidationError: If no identifier is given or the id is malformed
            NotFound: If no ticket matches within the event scope
            AlreadyCheckedIn: If the ticket was checked in before
        """
        invoice_no = invoice_key(invoice_no)
        if not ticket_id and not invoice_no:
            raise ValidationError('Ticket ID or invoice number is required')

        if ticket_id:
            try:
                ticket_id = uuid.UUID(str(ticket_id)).hex
            except ValueError:
                raise ValidationError('Invalid ticket ID format')
            ticket = self.store.get_ticket_by_id(ticket_id)
        else:
            ticket = self.store.get_ticket_by_invoice(invoice_no)

        ticket = self._scoped(ticket, event_id, NOT_FOUND_FOR_EVENT)

        if ticket.checked_in:
            raise AlreadyCheckedIn(ticket.name, ticket.check_in_time)

        try:
            updated = self.store.mark_checked_in(
                ticket.invoice_no,
                utcnow().isoformat(),
                event_id=event_id
            )
        except ConditionFailedError:
            current = self.store.get_ticket_by_invoice(ticket.invoice_no)
            if current is None:
                raise NotFound('Ticket not found')
            current = self._scoped(current, event_id, NOT_FOUND_FOR_EVENT)
            logger.info(
                f"Ticket {current.ticket_id} was checked in concurrently"
            )
            raise AlreadyCheckedIn(current.name, current.check_in_time)

        logger.info(
            f"Checked in ticket {updated.ticket_id}",
            extra={'invoice_no': updated.invoice_no, 'event_id': updated.event_id}
        )
        return updated

    def lookup_ticket(
        self,
        invoice_no: Optional[str],
        event_id: Optional[str] = None
    ) -> Ticket:
        """
        Get ticket details by invoice number without checking in.

        Raises:
            ValidationError: If no invoice number is given
            NotFound: If no ticket matches within the event scope
        """
        invoice_no = invoice_key(invoice_no)
        if not invoice_no:
            raise ValidationError('Invoice number is required')
        ticket = self.store.get_ticket_by_invoice(invoice_no)
        return self._scoped(
            ticket,
            event_id,
            'Ticket not found for this event. Please verify the QR code and event.'
        )

    def search_tickets(
        self,
        event_id: Optional[str],
        query: Optional[str] = None
    ) -> List[Ticket]:
        """
        Search an event's tickets by name or email.

        Matching is a case-insensitive substring test; results are ordered
        by name and capped at 50.

        Raises:
            ValidationError: If no event id is given
        """
        if not event_id:
            raise ValidationError('Event ID is required')

        tickets = self.store.query_event_tickets(event_id)
        if query:
            needle = query.casefold()
            tickets = [
                ticket for ticket in tickets
                if needle in (ticket.name or '').casefold()
                or needle in (ticket.email or '').casefold()
            ]

        tickets.sort(key=lambda ticket: ticket.name or '')
        return tickets[:SEARCH_LIMIT]

    def sync_events(self, form_source) -> List[Event]:
        """
        Upsert every active form as an event.

        Args:
            form_source: Object with ``list_active_forms()``

        Returns:
            Synced events ordered by start time

        Raises:
            UpstreamError: If the form source fails
        """
        events = []
        for form in form_source.list_active_forms():
            start = form.created_at
            if start.tzinfo is None:
                start = start.replace(tzinfo=timezone.utc)
            events.append(self.store.upsert_event(Event(
                event_id=uuid.uuid4().hex,
                form_id=form.external_id,
                title=form.title,
                start_time=start.isoformat(),
                end_time=(start + EVENT_WINDOW).isoformat(),
            )))

        events.sort(key=lambda event: event.start_time)
        logger.info(f"Synced {len(events)} events")
        return events

    def _scoped(
        self,
        ticket: Optional[Ticket],
        event_id: Optional[str],
        scoped_message: str
    ) -> Ticket:
        if ticket is None:
            raise NotFound(scoped_message if event_id else 'Ticket not found')
        if event_id and ticket.event_id != event_id:
            raise NotFound(scoped_message)
        return ticket
