"""Normalizer turning Jotform webhook payloads into ticket requests."""
import json
import logging
from typing import Any, Dict, Mapping

from processor.errors import MalformedInput, ValidationError
from processor.field_extractor import FIELD_ALIASES, extract_fields, probe
from processor.models import (
    Envelope,
    FlatEnvelope,
    NestedEnvelope,
    ParsedSubmission,
)
from processor.product_parser import parse_product

logger = logging.getLogger(__name__)


def classify_envelope(payload: Mapping[str, Any]) -> Envelope:
    """
    Decide which envelope shape a webhook payload uses.

    Args:
        payload: Decoded webhook body

    Returns:
        NestedEnvelope when ``rawRequest`` holds JSON text, otherwise
        FlatEnvelope
    """
    raw_request = payload.get('rawRequest')
    if isinstance(raw_request, str) and raw_request.strip():
        return NestedEnvelope(outer=dict(payload), raw_request=raw_request)
    return FlatEnvelope(fields=dict(payload))


class SubmissionNormalizer:
    """Normalizer for heterogeneous Jotform submissions."""

    def normalize(self, payload: Any) -> ParsedSubmission:
        """
        Normalize a webhook payload into a ParsedSubmission.

        Nested envelopes are tried first; a rawRequest that does not decode
        to a JSON object falls back to flat parsing of the outer payload.
        Required fields are not validated here.

        Args:
            payload: Decoded webhook body

        Returns:
            ParsedSubmission, possibly with empty required fields

        Raises:
            ValidationError: If the payload is not a mapping at all
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(
                'Invalid webhook data: payload must be a key-value mapping'
            )

        logger.debug(
            "Parsing webhook payload",
            extra={'keys': sorted(str(key) for key in payload.keys())}
        )

        form_id = self._outer_form_id(payload)
        envelope = classify_envelope(payload)

        if isinstance(envelope, NestedEnvelope):
            try:
                fields = self._unwrap(envelope, form_id)
                logger.info("Parsing submission from rawRequest")
                return self._parse_fields(fields, form_id)
            except MalformedInput as e:
                logger.warning(
                    f"Failed to parse rawRequest, falling back to flat "
                    f"parsing: {e.message}",
                    extra={'form_id': form_id}
                )
            envelope = FlatEnvelope(fields=dict(payload))

        logger.info("Parsing submission from top-level fields")
        return self._parse_fields(envelope.fields, form_id)

    def _outer_form_id(self, payload: Mapping[str, Any]) -> str:
        value = probe(payload, FIELD_ALIASES['form_id'])
        return str(value).strip() if value is not None else ''

    def _unwrap(self, envelope: NestedEnvelope, form_id: str) -> Dict[str, Any]:
        """
        Decode the embedded rawRequest and inject outer identifiers.

        Raises:
            MalformedInput: If rawRequest is not a JSON object
        """
        try:
            raw_fields = json.loads(envelope.raw_request)
        except ValueError as e:
            raise MalformedInput(f"rawRequest is not valid JSON: {e}") from e

        if not isinstance(raw_fields, dict):
            raise MalformedInput('rawRequest is not a JSON object')

        fields = dict(raw_fields)
        if form_id:
            fields['formID'] = form_id
            fields['formId'] = form_id
        form_title = envelope.outer.get('formTitle')
        if form_title and not fields.get('formTitle'):
            fields['formTitle'] = form_title
        return fields

    def _parse_fields(
        self,
        fields: Mapping[str, Any],
        form_id: str
    ) -> ParsedSubmission:
        canonical = extract_fields(fields)
        product = parse_product(canonical.products)

        submission = ParsedSubmission(
            email=canonical.email,
            name=canonical.name,
            invoice_no=canonical.invoice_no,
            form_id=form_id or canonical.form_id,
            phone=canonical.phone,
            church=canonical.church,
            youth_ministry=canonical.youth_ministry,
            event_name=canonical.event_name,
            event_date=canonical.event_date,
            quantity=product.quantity,
            product_details=product.product_details,
            total_amount=product.total_amount,
        )

        logger.info(
            "Final parsed submission data",
            extra={
                'form_id': submission.form_id,
                'invoice_no': submission.invoice_no,
                'quantity': submission.quantity,
                'total_amount': submission.total_amount,
            }
        )
        return submission


def normalize(payload: Any) -> ParsedSubmission:
    """Normalize a webhook payload with a default SubmissionNormalizer."""
    return SubmissionNormalizer().normalize(payload)
