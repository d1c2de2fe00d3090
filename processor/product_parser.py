"""Parser for Jotform "My Products" payment fields."""
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from processor.errors import MalformedInput
from processor.models import ProductDetails

logger = logging.getLogger(__name__)

QUANTITY_PATTERN = re.compile(r'Quantity:\s*(\d+)')
AMOUNT_PATTERN = re.compile(r'Amount:\s*([\d.]+)')


@dataclass
class ProductParseResult:
    """Parsed product details plus the error that forced any fallback."""
    value: ProductDetails
    error: Optional[MalformedInput] = None


def _to_quantity(raw: Any) -> int:
    try:
        quantity = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return 1
    return quantity if quantity >= 1 else 1


def _to_amount(raw: Any) -> float:
    try:
        amount = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(amount) or amount < 0:
        return 0.0
    return amount


def _quantity_from_text(text: str) -> int:
    match = QUANTITY_PATTERN.search(text)
    return _to_quantity(match.group(1)) if match else 1


def _load_json(raw: Any, label: str) -> Any:
    if isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedInput(f"Could not parse {label}: {e}") from e


def _parse_payment_array(payment_array: Any) -> ProductDetails:
    """Stadium 24 format: JSON with a ``product`` list and a ``total``."""
    payment = _load_json(payment_array, 'paymentArray')
    if not isinstance(payment, dict):
        raise MalformedInput('paymentArray is not a JSON object')

    details = ProductDetails()
    products = payment.get('product')
    if isinstance(products, list) and products:
        product_string = str(products[0] or '')
        details.quantity = _quantity_from_text(product_string)
        details.product_details = product_string

    if payment.get('total'):
        details.total_amount = _to_amount(payment['total'])

    return details


def _parse_indexed_product(raw: Any) -> ProductDetails:
    """Direct format: key ``"1"`` holding JSON ``{name, quantity, price}``."""
    product = _load_json(raw, 'product entry')
    if not isinstance(product, dict):
        raise MalformedInput('Product entry is not a JSON object')

    details = ProductDetails()
    if product.get('quantity'):
        details.quantity = _to_quantity(product['quantity'])
    if product.get('name'):
        details.product_details = (
            f"{product['name']} (Quantity: {details.quantity})"
        )
    if product.get('price'):
        details.total_amount = _to_amount(product['price']) * details.quantity
    return details


def _parse_product_string(text: str) -> ProductDetails:
    """Human readable format: "General Admission (Amount: 5.00 AUD, Quantity: 15)"."""
    quantity = _quantity_from_text(text)
    total_amount = 0.0
    match = AMOUNT_PATTERN.search(text)
    if match:
        total_amount = _to_amount(match.group(1)) * quantity
    return ProductDetails(
        quantity=quantity,
        product_details=text,
        total_amount=total_amount
    )


def parse_product_result(product_field: Any) -> ProductParseResult:
    """
    Parse a products field, keeping any parse failure visible.

    Args:
        product_field: Raw products value from the submission

    Returns:
        ProductParseResult whose value holds the defaults when the field is
        absent, of an unknown shape, or malformed
    """
    try:
        if isinstance(product_field, dict):
            if product_field.get('paymentArray'):
                return ProductParseResult(
                    _parse_payment_array(product_field['paymentArray'])
                )
            if product_field.get('1'):
                return ProductParseResult(
                    _parse_indexed_product(product_field['1'])
                )
        elif isinstance(product_field, str) and product_field.strip():
            return ProductParseResult(_parse_product_string(product_field))
    except MalformedInput as e:
        return ProductParseResult(ProductDetails(), e)

    return ProductParseResult(ProductDetails())


def parse_product(product_field: Any) -> ProductDetails:
    """
    Parse a products field into quantity, description and total.

    Never raises: malformed input is logged and replaced by the defaults
    (quantity 1, empty description, total 0).
    """
    result = parse_product_result(product_field)
    if result.error is not None:
        logger.warning(
            f"Error parsing product details: {result.error.message}",
            extra={'product_field': repr(product_field)[:500]}
        )
    return result.value
