"""Client for the Jotform REST API."""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, List

import requests

from processor.errors import UpstreamError
from processor.models import FormEvent

logger = logging.getLogger(__name__)


class JotformClient:
    """Source of active Jotform forms, each of which is an event."""

    DEFAULT_BASE_URL = "https://api.jotform.com"
    FORMS_LIMIT = 100

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 30,
        max_retries: int = 3
    ):
        """
        Initialize the Jotform client.

        Args:
            api_key: Jotform API key
            base_url: API root (default: https://api.jotform.com)
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts before giving up (default: 3)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries

    def list_active_forms(self) -> List[FormEvent]:
        """
        Fetch enabled forms from Jotform.

        Returns:
            List of FormEvent objects

        Raises:
            UpstreamError: If the API cannot be reached or reports an error
        """
        payload = self._fetch_forms()

        if payload.get('responseCode') != 200:
            message = payload.get('message', 'unknown error')
            logger.error(f"Jotform API error: {message}")
            raise UpstreamError(f"Jotform API error: {message}")

        forms = [
            form for form in payload.get('content') or []
            if form.get('status') == 'ENABLED'
        ]
        events = [
            FormEvent(
                external_id=str(form['id']),
                title=form.get('title', ''),
                created_at=self._parse_created_at(form)
            )
            for form in forms
            if form.get('id')
        ]

        logger.info(f"Retrieved {len(events)} live events from Jotform")
        return events

    def _fetch_forms(self) -> dict:
        """
        Request the form listing with retry logic.

        Raises:
            UpstreamError: If all retry attempts fail
        """
        params = {
            'apiKey': self.api_key,
            'limit': self.FORMS_LIMIT,
            'filter': json.dumps({'status': 'ENABLED'}),
        }

        base_delay = 1  # seconds

        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Fetching Jotform forms (attempt {attempt + 1}/{self.max_retries})"
                )
                response = requests.get(
                    f"{self.base_url}/user/forms",
                    params=params,
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response.json()

            except (requests.RequestException, ValueError) as e:
                if attempt < self.max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise UpstreamError('Failed to fetch events from Jotform') from e

        raise UpstreamError('Failed to fetch events from Jotform')

    def _parse_created_at(self, form: dict) -> datetime:
        """
        Parse a form's ``created_at`` into an aware UTC datetime.

        Accepts epoch seconds (number or numeric string) and
        ``YYYY-MM-DD HH:MM:SS``. Anything else falls back to now.
        """
        raw: Any = form.get('created_at')
        parsed = None

        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            parsed = self._from_epoch(raw)
        elif isinstance(raw, str) and raw.strip():
            text = raw.strip()
            try:
                parsed = self._from_epoch(float(text))
            except ValueError:
                for fmt in ('%Y-%m-%d %H:%M:%S', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%d'):
                    try:
                        parsed = datetime.strptime(text, fmt).replace(
                            tzinfo=timezone.utc
                        )
                        break
                    except ValueError:
                        continue

        if parsed is None or parsed.timestamp() <= 0:
            logger.warning(
                f"Invalid created_at for form {form.get('id')}, using current date",
                extra={'created_at': repr(raw)}
            )
            return datetime.now(timezone.utc)
        return parsed

    def _from_epoch(self, seconds: float):
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
