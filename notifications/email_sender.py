"""Ticket confirmation email delivery through Amazon SES."""
import binascii
import html
import logging
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from notifications.qr_generator import decode_data_url
from processor.errors import UpstreamError
from processor.models import TicketEmail

logger = logging.getLogger(__name__)

QR_CONTENT_ID = 'ticket-qr'


class SESEmailSender:
    """Sends ticket emails with the QR code embedded inline."""

    def __init__(self, sender: str):
        """
        Args:
            sender: Verified SES source address
        """
        self.sender = sender
        self.ses = boto3.client('ses')

    def send_ticket_email(self, email: TicketEmail) -> str:
        """
        Send the ticket confirmation email.

        Returns:
            SES message id

        Raises:
            UpstreamError: If the message cannot be built or SES rejects it
        """
        message = self.build_message(email)

        try:
            response = self.ses.send_raw_email(
                Source=self.sender,
                Destinations=[email.to],
                RawMessage={'Data': message.as_string()}
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                f"Failed to send ticket email: {e}",
                extra={'invoice_no': email.invoice_no}
            )
            raise UpstreamError(f"Failed to send ticket email: {e}") from e

        message_id = response.get('MessageId', '')
        logger.info(
            "Ticket email sent",
            extra={'invoice_no': email.invoice_no, 'message_id': message_id}
        )
        return message_id

    def build_message(self, email: TicketEmail) -> MIMEMultipart:
        """Build a multipart/related message with the QR as a CID image."""
        try:
            qr_png = decode_data_url(email.qr_data_url)
        except (ValueError, binascii.Error) as e:
            raise UpstreamError(f"Invalid QR code data: {e}") from e

        message = MIMEMultipart('related')
        message['Subject'] = f"Your ticket for {email.event_title}"
        message['From'] = self.sender
        message['To'] = email.to

        alternative = MIMEMultipart('alternative')
        alternative.attach(MIMEText(self._render_text(email), 'plain', 'utf-8'))
        alternative.attach(MIMEText(self._render_html(email), 'html', 'utf-8'))
        message.attach(alternative)

        image = MIMEImage(qr_png, _subtype='png')
        image.add_header('Content-ID', f'<{QR_CONTENT_ID}>')
        image.add_header(
            'Content-Disposition', 'inline',
            filename=f'ticket-{email.invoice_no}.png'
        )
        message.attach(image)
        return message

    def _render_text(self, email: TicketEmail) -> str:
        return (
            f"Hi {email.name},\n\n"
            f"Thank you for registering for {email.event_title} "
            f"on {email.event_date}.\n"
            f"Your invoice number is {email.invoice_no}.\n\n"
            "Please show the attached QR code at the entrance to check in.\n"
        )

    def _render_html(self, email: TicketEmail) -> str:
        name = html.escape(email.name)
        title = html.escape(email.event_title)
        date = html.escape(email.event_date)
        invoice_no = html.escape(email.invoice_no)
        return (
            f"<p>Hi {name},</p>"
            f"<p>Thank you for registering for <strong>{title}</strong> "
            f"on {date}.</p>"
            f"<p>Your invoice number is <strong>{invoice_no}</strong>.</p>"
            "<p>Please show this QR code at the entrance to check in:</p>"
            f'<p><img src="cid:{QR_CONTENT_ID}" alt="Ticket QR code" '
            'width="250" height="250"></p>'
        )
