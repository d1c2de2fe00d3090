"""AWS Lambda handler for the Youth Alive ticketing API."""
import base64
import io
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from werkzeug.formparser import parse_form_data

from jotform.client import JotformClient
from notifications.email_sender import SESEmailSender
from notifications.qr_generator import generate_qr_data_url
from processor.errors import TicketingError, ValidationError
from processor.models import AppConfig
from processor.submission_normalizer import SubmissionNormalizer
from processor.ticket_manager import TicketManager
from storage.dynamodb_manager import DynamoDBManager

logger = logging.getLogger(__name__)

# Attributes every LogRecord carries; anything else came from ``extra``.
_RESERVED_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}

FORM_CONTENT_TYPES = ('multipart/form-data', 'application/x-www-form-urlencoded')


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """JSON formatter that also emits fields passed via ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body, default=str)
    }


def _header(event: Dict[str, Any], name: str) -> str:
    for key, value in (event.get('headers') or {}).items():
        if key.lower() == name:
            return value or ''
    return ''


def _route(event: Dict[str, Any]) -> Tuple[str, str]:
    """Return (method, path) for REST (v1) and HTTP API (v2) events."""
    http = (event.get('requestContext') or {}).get('http') or {}
    method = http.get('method') or event.get('httpMethod') or 'GET'
    path = event.get('rawPath') or event.get('path') or '/'
    if len(path) > 1:
        path = path.rstrip('/')
    return method.upper(), path


def parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode a request body as JSON, urlencoded or multipart form data.

    Raises:
        ValidationError: If a JSON body is invalid or not an object
    """
    body = event.get('body')
    if not body:
        return {}

    raw = body.encode('utf-8') if isinstance(body, str) else body
    if event.get('isBase64Encoded'):
        raw = base64.b64decode(raw)

    content_type = _header(event, 'content-type')

    if content_type.lower().startswith(FORM_CONTENT_TYPES):
        return _parse_form(raw, content_type)

    try:
        parsed = json.loads(raw)
    except ValueError:
        raise ValidationError('Request body is not valid JSON')
    if not isinstance(parsed, dict):
        raise ValidationError('Request body must be a JSON object')
    return parsed


def _parse_form(raw: bytes, content_type: str) -> Dict[str, Any]:
    # File uploads land in the discarded files dict; repeated names keep the first value.
    environ = {
        'REQUEST_METHOD': 'POST',
        'CONTENT_TYPE': content_type,
        'CONTENT_LENGTH': str(len(raw)),
        'wsgi.input': io.BytesIO(raw),
    }
    _, form, _ = parse_form_data(environ)
    return form.to_dict()


class Application:
    """Wires the core components together for one invocation."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.store = DynamoDBManager(
            events_table=config.events_table,
            users_table=config.users_table,
            tickets_table=config.tickets_table
        )
        self.normalizer = SubmissionNormalizer()
        self.manager = TicketManager(
            store=self.store,
            qr_generator=generate_qr_data_url,
            email_sender=SESEmailSender(sender=config.sender_email or ''),
            default_event_title=config.default_event_title
        )

    def routes(self) -> Dict[Tuple[str, str], Callable[[Dict[str, Any]], Dict[str, Any]]]:
        return {
            ('GET', '/health'): self.health,
            ('GET', '/api/events'): self.list_events,
            ('POST', '/api/events/webhook'): self.webhook,
            ('POST', '/api/webhooks/jotform'): self.webhook,
            ('GET', '/api/checkin/search'): self.search,
            ('POST', '/api/checkin/scan'): self.check_in,
            ('POST', '/api/checkin/lookup'): self.lookup,
        }

    def health(self, event: Dict[str, Any]) -> Dict[str, Any]:
        return response(200, {'status': 'ok', 'message': 'Server is running'})

    def list_events(self, event: Dict[str, Any]) -> Dict[str, Any]:
        client = JotformClient(
            api_key=self.config.jotform_api_key or '',
            base_url=self.config.jotform_base_url,
            timeout=self.config.timeout_seconds
        )
        events = self.manager.sync_events(client)
        return response(200, {
            'success': True,
            'count': len(events),
            'data': [e.to_dict() for e in events]
        })

    def webhook(self, event: Dict[str, Any]) -> Dict[str, Any]:
        payload = parse_body(event)
        logger.info("Received webhook payload", extra={'keys': sorted(payload)})

        submission = self.normalizer.normalize(payload)
        outcome = self.manager.process_submission(submission)

        body = {
            'success': True,
            'message': 'Webhook processed successfully',
            'ticketId': outcome.ticket.ticket_id,
            'created': outcome.created,
        }
        if outcome.created:
            body['emailSent'] = outcome.email_sent
        if outcome.notification_error:
            body['message'] = (
                'Ticket created, but the confirmation email may not have '
                'reached the recipient'
            )
            body['notificationError'] = outcome.notification_error
        return response(200, body)

    def search(self, event: Dict[str, Any]) -> Dict[str, Any]:
        params = event.get('queryStringParameters') or {}
        tickets = self.manager.search_tickets(
            params.get('eventId'), params.get('query')
        )
        return response(200, {
            'success': True,
            'count': len(tickets),
            'data': [t.to_dict() for t in tickets]
        })

    def check_in(self, event: Dict[str, Any]) -> Dict[str, Any]:
        body = parse_body(event)
        ticket = self.manager.check_in(
            ticket_id=body.get('ticketId'),
            invoice_no=body.get('invoiceNo'),
            event_id=body.get('eventId')
        )
        return response(200, {
            'success': True,
            'message': f"Welcome {ticket.name}! Check-in successful.",
            'data': ticket.to_dict()
        })

    def lookup(self, event: Dict[str, Any]) -> Dict[str, Any]:
        body = parse_body(event)
        ticket = self.manager.lookup_ticket(
            body.get('invoiceNo'), body.get('eventId')
        )
        return response(200, {
            'success': True,
            'message': 'Ticket found',
            'data': ticket.to_dict()
        })


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for API Gateway proxy events.

    Args:
        event: API Gateway REST or HTTP API proxy event
        context: Lambda context object

    Returns:
        API Gateway proxy response
    """
    config = AppConfig.from_env()
    setup_logging(config.log_level)

    start_time = time.time()
    method, path = _route(event)
    request_id: Optional[str] = getattr(context, 'aws_request_id', None)
    logger.info(
        "Request started",
        extra={'method': method, 'path': path, 'request_id': request_id}
    )

    try:
        app = Application(config)
        handler = app.routes().get((method, path))
        if handler is None:
            return response(404, {
                'success': False,
                'message': f"Not found - {path}"
            })
        result = handler(event)

    except TicketingError as e:
        logger.warning(
            f"Request failed: {e.message}",
            extra={'error_type': type(e).__name__, 'path': path}
        )
        return response(e.status_code, e.to_body())

    except Exception as e:
        logger.error(
            f"Unhandled error processing request: {e}",
            extra={'error_type': type(e).__name__, 'path': path},
            exc_info=True
        )
        return response(500, {
            'success': False,
            'message': 'Internal server error'
        })

    duration = time.time() - start_time
    logger.info(
        "Request completed",
        extra={
            'path': path,
            'status_code': result['statusCode'],
            'duration_seconds': round(duration, 2)
        }
    )
    return result
