"""Data models for submission processing and ticketing."""
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union


@dataclass
class ProductDetails:
    """Quantity, description and total parsed from a products field."""
    quantity: int = 1
    product_details: str = ''
    total_amount: float = 0.0


@dataclass
class CanonicalFields:
    """Fields located in a submission regardless of form template."""
    email: str
    name: str
    invoice_no: str
    form_id: str
    phone: str = ''
    church: str = ''
    youth_ministry: str = ''
    event_name: str = ''
    event_date: str = ''
    products: Any = None


@dataclass
class ParsedSubmission:
    """Canonical ticket request produced from a webhook payload."""
    email: str
    name: str
    invoice_no: str
    form_id: str
    phone: str = ''
    church: str = ''
    youth_ministry: str = ''
    event_name: str = ''
    event_date: str = ''
    quantity: int = 1
    product_details: str = ''
    total_amount: float = 0.0


@dataclass
class NestedEnvelope:
    """Webhook whose field data is embedded as a JSON string in rawRequest."""
    outer: Dict[str, Any]
    raw_request: str


@dataclass
class FlatEnvelope:
    """Webhook carrying its field data as top-level keys."""
    fields: Dict[str, Any]


Envelope = Union[NestedEnvelope, FlatEnvelope]


@dataclass
class FormEvent:
    """Active form as reported by the form-events source."""
    external_id: str
    title: str
    created_at: datetime


@dataclass
class Event:
    """Stored event, keyed by its Jotform form id."""
    event_id: str
    form_id: str
    title: str
    start_time: str
    end_time: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.event_id,
            'formId': self.form_id,
            'title': self.title,
            'startTime': self.start_time,
            'endTime': self.end_time,
        }


@dataclass
class User:
    """Ticket holder account."""
    user_id: str
    email: str
    password_hash: str


@dataclass
class Ticket:
    """Ticket issued for one invoice."""
    ticket_id: str
    invoice_no: str
    user_id: str
    event_id: str
    name: str
    email: str
    phone: str = ''
    church: str = ''
    youth_ministry: str = ''
    quantity: int = 1
    product_details: str = ''
    total_amount: float = 0.0
    checked_in: bool = False
    check_in_time: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the field names the check-in frontend expects."""
        return {
            'id': self.ticket_id,
            'invoiceNo': self.invoice_no,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'church': self.church,
            'youthMinistry': self.youth_ministry,
            'quantity': self.quantity,
            'productDetails': self.product_details,
            'totalAmount': self.total_amount,
            'checkedIn': self.checked_in,
            'checkInTime': self.check_in_time,
            'event': self.event_id,
        }


@dataclass
class TicketEmail:
    """Confirmation email request."""
    to: str
    name: str
    event_title: str
    event_date: str
    invoice_no: str
    qr_data_url: str


@dataclass
class SubmissionOutcome:
    """Result of processing one submission."""
    ticket: Ticket
    created: bool
    notification_error: Optional[str] = None

    @property
    def email_sent(self) -> bool:
        return self.created and self.notification_error is None


@dataclass
class AppConfig:
    """Runtime configuration read from the environment."""
    events_table: str = 'youthalive-events'
    users_table: str = 'youthalive-users'
    tickets_table: str = 'youthalive-tickets'
    log_level: str = 'INFO'
    jotform_api_key: Optional[str] = None
    jotform_base_url: str = 'https://api.jotform.com'
    timeout_seconds: int = 30
    sender_email: Optional[str] = None
    default_event_title: str = 'Youth Alive Event'

    @classmethod
    def from_env(cls) -> 'AppConfig':
        return cls(
            events_table=os.environ.get('EVENTS_TABLE', 'youthalive-events'),
            users_table=os.environ.get('USERS_TABLE', 'youthalive-users'),
            tickets_table=os.environ.get('TICKETS_TABLE', 'youthalive-tickets'),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            jotform_api_key=os.environ.get('JOTFORM_API_KEY'),
            jotform_base_url=os.environ.get(
                'JOTFORM_BASE_URL', 'https://api.jotform.com'
            ),
            timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
            sender_email=os.environ.get('SENDER_EMAIL'),
            default_event_title=os.environ.get(
                'DEFAULT_EVENT_TITLE', 'Youth Alive Event'
            ),
        )
