"""DynamoDB manager for event, user and ticket storage."""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.models import Event, Ticket, User

logger = logging.getLogger(__name__)


class DuplicateRecordError(Exception):
    """A conditional insert found the unique key already taken."""


class ConditionFailedError(Exception):
    """A conditional update found the record in an unexpected state."""


def _is_condition_failure(error: ClientError) -> bool:
    code = error.response.get('Error', {}).get('Code')
    return code == 'ConditionalCheckFailedException'


class DynamoDBManager:
    """
    Manager for DynamoDB operations.

    Uniqueness of ``Event.form_id``, ``User.email`` and ``Ticket.invoice_no``
    is enforced by making each the partition key of its table and inserting
    with ``attribute_not_exists``. Check-in is a conditional update, so
    concurrent writers cannot both succeed.
    """

    TICKET_ID_INDEX = 'ticket-id-index'
    EVENT_INDEX = 'event-index'

    def __init__(self, events_table: str, users_table: str, tickets_table: str):
        """
        Initialize DynamoDB resource and table references.

        Args:
            events_table: Table keyed by ``form_id``
            users_table: Table keyed by ``email``
            tickets_table: Table keyed by ``invoice_no`` with GSIs on
                ``ticket_id`` and ``event_id``
        """
        self.dynamodb = boto3.resource('dynamodb')
        self.events = self.dynamodb.Table(events_table)
        self.users = self.dynamodb.Table(users_table)
        self.tickets = self.dynamodb.Table(tickets_table)
        logger.info(
            f"Initialized DynamoDBManager for tables: "
            f"{events_table}, {users_table}, {tickets_table}"
        )

    # Events

    def get_event(self, form_id: str) -> Optional[Event]:
        response = self.events.get_item(Key={'form_id': form_id})
        item = response.get('Item')
        return self._item_to_event(item) if item else None

    def create_event(self, event: Event) -> Event:
        """
        Insert an event unless one already exists for its form id.

        Raises:
            DuplicateRecordError: If the form id is already stored
        """
        self._put_unique(self.events, self._event_to_item(event), 'form_id')
        logger.info(f"Created event for form {event.form_id}")
        return event

    def upsert_event(self, event: Event) -> Event:
        """
        Create or refresh an event by form id, keeping any existing event id.

        Returns:
            The stored Event
        """
        response = self.events.update_item(
            Key={'form_id': event.form_id},
            UpdateExpression=(
                'SET title = :title, start_time = :start_time, '
                'end_time = :end_time, '
                'event_id = if_not_exists(event_id, :event_id)'
            ),
            ExpressionAttributeValues={
                ':title': event.title,
                ':start_time': event.start_time,
                ':end_time': event.end_time,
                ':event_id': event.event_id,
            },
            ReturnValues='ALL_NEW'
        )
        return self._item_to_event(response['Attributes'])

    # Users

    def get_user(self, email: str) -> Optional[User]:
        response = self.users.get_item(Key={'email': email})
        item = response.get('Item')
        if not item:
            return None
        return User(
            user_id=item['user_id'],
            email=item['email'],
            password_hash=item['password_hash']
        )

    def create_user(self, user: User) -> User:
        """
        Raises:
            DuplicateRecordError: If the email is already registered
        """
        item = {
            'email': user.email,
            'user_id': user.user_id,
            'password_hash': user.password_hash,
        }
        self._put_unique(self.users, item, 'email')
        logger.info("Created user for ticket holder")
        return user

    # Tickets

    def get_ticket_by_invoice(self, invoice_no: str) -> Optional[Ticket]:
        response = self.tickets.get_item(
            Key={'invoice_no': invoice_no},
            ConsistentRead=True
        )
        item = response.get('Item')
        return self._item_to_ticket(item) if item else None

    def get_ticket_by_id(self, ticket_id: str) -> Optional[Ticket]:
        response = self.tickets.query(
            IndexName=self.TICKET_ID_INDEX,
            KeyConditionExpression=Key('ticket_id').eq(ticket_id)
        )
        items = response.get('Items', [])
        if not items:
            return None
        # The index is eventually consistent; re-read from the base table.
        return self.get_ticket_by_invoice(items[0]['invoice_no'])

    def create_ticket(self, ticket: Ticket) -> Ticket:
        """
        Insert a ticket exactly once per invoice number.

        Raises:
            DuplicateRecordError: If a ticket for the invoice already exists
        """
        self._put_unique(self.tickets, self._ticket_to_item(ticket), 'invoice_no')
        logger.info(
            f"Created ticket {ticket.ticket_id}",
            extra={'invoice_no': ticket.invoice_no}
        )
        return ticket

    def mark_checked_in(
        self,
        invoice_no: str,
        check_in_time: str,
        event_id: Optional[str] = None
    ) -> Ticket:
        """
        Atomically move a ticket from not checked in to checked in.

        Args:
            invoice_no: Ticket key
            check_in_time: ISO 8601 timestamp to record
            event_id: When given, the ticket must also belong to this event

        Returns:
            The updated Ticket

        Raises:
            ConditionFailedError: If the ticket is missing, already checked
                in, or belongs to another event
        """
        condition = 'attribute_exists(invoice_no) AND checked_in = :false'
        values: Dict[str, Any] = {
            ':true': True,
            ':false': False,
            ':time': check_in_time,
        }
        if event_id:
            condition += ' AND event_id = :event_id'
            values[':event_id'] = event_id

        try:
            response = self.tickets.update_item(
                Key={'invoice_no': invoice_no},
                UpdateExpression='SET checked_in = :true, check_in_time = :time',
                ConditionExpression=condition,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if _is_condition_failure(e):
                raise ConditionFailedError(invoice_no) from e
            logger.error(f"Error checking in ticket {invoice_no}: {e}")
            raise

        return self._item_to_ticket(response['Attributes'])

    def query_event_tickets(self, event_id: str) -> List[Ticket]:
        """
        Retrieve every ticket for an event via the event index.

        Returns:
            List of Ticket objects in index order
        """
        tickets = []
        kwargs: Dict[str, Any] = {
            'IndexName': self.EVENT_INDEX,
            'KeyConditionExpression': Key('event_id').eq(event_id),
        }

        try:
            while True:
                response = self.tickets.query(**kwargs)
                for item in response.get('Items', []):
                    ticket = self._item_to_ticket(item)
                    if ticket:
                        tickets.append(ticket)
                if 'LastEvaluatedKey' not in response:
                    break
                kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except ClientError as e:
            logger.error(f"Error querying tickets for event {event_id}: {e}")
            raise

        logger.info(f"Retrieved {len(tickets)} tickets for event {event_id}")
        return tickets

    # Conversions

    def _put_unique(self, table, item: Dict[str, Any], key: str) -> None:
        try:
            table.put_item(
                Item=item,
                ConditionExpression=f'attribute_not_exists({key})'
            )
        except ClientError as e:
            if _is_condition_failure(e):
                raise DuplicateRecordError(item[key]) from e
            logger.error(f"Error writing to {table.name}: {e}")
            raise

    def _event_to_item(self, event: Event) -> dict:
        return {
            'form_id': event.form_id,
            'event_id': event.event_id,
            'title': event.title,
            'start_time': event.start_time,
            'end_time': event.end_time,
        }

    def _item_to_event(self, item: dict) -> Event:
        return Event(
            event_id=item['event_id'],
            form_id=item['form_id'],
            title=item.get('title', ''),
            start_time=item.get('start_time', ''),
            end_time=item.get('end_time', '')
        )

    def _ticket_to_item(self, ticket: Ticket) -> dict:
        """
        Convert Ticket object to DynamoDB item.

        Floats are stored as Decimal, which DynamoDB requires.
        """
        item = {
            'invoice_no': ticket.invoice_no,
            'ticket_id': ticket.ticket_id,
            'user_id': ticket.user_id,
            'event_id': ticket.event_id,
            'name': ticket.name,
            'email': ticket.email,
            'phone': ticket.phone,
            'church': ticket.church,
            'youth_ministry': ticket.youth_ministry,
            'quantity': ticket.quantity,
            'product_details': ticket.product_details,
            'total_amount': Decimal(str(ticket.total_amount)),
            'checked_in': ticket.checked_in,
        }

        # Add optional fields if present
        if ticket.check_in_time:
            item['check_in_time'] = ticket.check_in_time
        if ticket.created_at:
            item['created_at'] = ticket.created_at

        return item

    def _item_to_ticket(self, item: dict) -> Optional[Ticket]:
        """
        Convert DynamoDB item to Ticket object.

        Returns:
            Ticket object or None if conversion fails
        """
        try:
            return Ticket(
                ticket_id=item['ticket_id'],
                invoice_no=item['invoice_no'],
                user_id=item['user_id'],
                event_id=item['event_id'],
                name=item.get('name', ''),
                email=item.get('email', ''),
                phone=item.get('phone', ''),
                church=item.get('church', ''),
                youth_ministry=item.get('youth_ministry', ''),
                quantity=int(item.get('quantity', 1)),
                product_details=item.get('product_details', ''),
                total_amount=float(item.get('total_amount', 0)),
                checked_in=bool(item.get('checked_in', False)),
                check_in_time=item.get('check_in_time'),
                created_at=item.get('created_at')
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to Ticket: {e}")
            return None
