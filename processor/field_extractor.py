"""Field extraction for Jotform submissions across form templates."""
import logging
import re
import time
from typing import Any, Dict, List, Mapping, Optional

from processor.models import CanonicalFields

logger = logging.getLogger(__name__)

# Candidate keys per canonical field, in probe order. The q-prefixed keys
# belong to the Stadium 24 and WebApp form templates; plain keys are
# generic fallbacks.
FIELD_ALIASES: Dict[str, List[str]] = {
    'email': ['q4_email4', 'q5_email', 'q4_email', 'email'],
    'name': [
        'q4_fullName',
        'q4_name',
        'q3_ltstronggtnameltstronggt',
        'q3_name',
        'name',
    ],
    'phone': [
        'q7_phone',
        'q7_phoneNumber',
        'q16_ltstronggtphoneNumberltstronggt',
        'q11_phoneNumber',
        'phone',
    ],
    'church': [
        'q10_church',
        'q10_youthGroup',
        'q12_ltstronggtwhichYouth',
        'q9_youthGroup',
        'q12_textbox',
        'church',
        'youthGroup',
    ],
    'youth_ministry': ['youthMinistry', 'youth_ministry'],
    'invoice_no': [
        'q38_invoiceId',
        '38',
        'q11_invoiceId',
        'q7_invoiceId',
        'q11_autoincrement',
        'invoiceId',
    ],
    'event_name': ['eventName', 'event_name', 'formTitle'],
    'event_date': ['eventDate', 'event_date'],
    'form_id': ['formID', 'form_id', 'formId'],
}

PRODUCT_ALIASES = ['q3_products', 'q3_myProducts', '3']

INVOICE_PREFIXES = ('# INV-', '# ', 'INV-')

_BRACKET_KEY = re.compile(r'^(?P<base>[^\[\]]+)\[(?P<part>[^\[\]]+)\]$')


def fold_bracket_keys(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Fold form-urlencoded sub-keys into nested mappings.

    ``q3_name[first]`` and ``q3_name[last]`` become
    ``q3_name = {'first': ..., 'last': ...}``. A base key that is already
    present is left untouched.

    Args:
        fields: Flat submission mapping

    Returns:
        New mapping with bracketed keys grouped under their base key
    """
    folded: Dict[str, Any] = dict(fields)
    for key, value in fields.items():
        match = _BRACKET_KEY.match(str(key))
        if not match:
            continue
        base = match.group('base')
        if base in fields and not isinstance(fields[base], dict):
            continue
        nested = dict(folded.get(base) or {})
        nested.setdefault(match.group('part'), value)
        folded[base] = nested
    return folded


def flatten_value(value: Any) -> str:
    """
    Flatten a field value into a trimmed string.

    Structured values are recognised by shape: ``full`` wins when present,
    then ``first``/``last``, then any remaining scalar parts in order.
    """
    if value is None:
        return ''
    if isinstance(value, dict):
        full = value.get('full')
        if full:
            return str(full).strip()
        if 'first' in value or 'last' in value:
            first = value.get('first') or ''
            last = value.get('last') or ''
            return f"{first} {last}".strip()
        parts = [
            str(part).strip() for part in value.values()
            if part not in (None, '') and not isinstance(part, (dict, list))
        ]
        return ' '.join(part for part in parts if part)
    if isinstance(value, list):
        return ', '.join(flatten_value(item) for item in value if item)
    return str(value).strip()


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list)):
        return not value
    return False


def probe(fields: Mapping[str, Any], aliases: List[str]) -> Optional[Any]:
    """Return the first present, non-empty value among the alias keys."""
    for key in aliases:
        value = fields.get(key)
        if not _is_empty(value):
            return value
    return None


def strip_invoice_prefix(invoice_no: str) -> str:
    """
    Remove a single known textual prefix from an invoice number.

    Only the first matching prefix is removed:
    ``"# INV-123"`` -> ``"123"``, ``"INV-123"`` -> ``"123"``,
    ``"123"`` -> ``"123"``.
    """
    for prefix in INVOICE_PREFIXES:
        if invoice_no.startswith(prefix):
            return invoice_no[len(prefix):]
    return invoice_no


def placeholder_invoice_no() -> str:
    """Invoice number used when a submission carries none."""
    return f"INV-{int(time.time() * 1000)}"


def extract_fields(fields: Mapping[str, Any]) -> CanonicalFields:
    """
    Locate the canonical fields in a flat submission mapping.

    Args:
        fields: Submission fields after any envelope unwrapping

    Returns:
        CanonicalFields with every value flattened to a string, except
        ``products`` which is passed through raw for the product parser
    """
    folded = fold_bracket_keys(fields)

    values = {
        name: flatten_value(probe(folded, aliases))
        for name, aliases in FIELD_ALIASES.items()
    }

    invoice_no = values['invoice_no']
    if invoice_no:
        invoice_no = strip_invoice_prefix(invoice_no)
    else:
        invoice_no = placeholder_invoice_no()
        logger.warning(
            f"Submission has no invoice number, using placeholder {invoice_no}",
            extra={'form_id': values['form_id']}
        )

    products = probe(folded, PRODUCT_ALIASES)
    if products is None:
        logger.info("No product field found in submission")

    return CanonicalFields(
        email=values['email'],
        name=values['name'],
        invoice_no=invoice_no,
        form_id=values['form_id'],
        phone=values['phone'],
        church=values['church'],
        youth_ministry=values['youth_ministry'],
        event_name=values['event_name'],
        event_date=values['event_date'],
        products=products,
    )
