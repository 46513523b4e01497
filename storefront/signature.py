# storefront/signature.py
"""HMAC-SHA256 signatures used by eSewa ePay v2.

The signed message is ``name=value`` pairs joined by commas, in exactly the
order given by ``signed_field_names``::

    total_amount=100,transaction_uuid=11-201-13,product_code=EPAYTEST

The digest is base64 encoded. Reordering the names changes the signature.
"""
import base64
import hashlib
import hmac
from typing import Mapping, Sequence, Union

FieldNames = Union[str, Sequence[str]]

# a signature must cover the amount, the idempotency key and one merchant/txn code
REQUIRED_SIGNED_FIELDS = ("total_amount", "transaction_uuid")
CODE_FIELDS = ("product_code", "transaction_code")


def parse_field_names(signed_field_names: FieldNames) -> list:
    if isinstance(signed_field_names, str):
        names = signed_field_names.split(",")
    else:
        names = list(signed_field_names)
    return [name.strip() for name in names]


def field_text(value) -> str:
    # render numbers the way the gateway's JS client does: 100.0 -> "100"
    if isinstance(value, bool):
        raise ValueError("boolean values cannot be signed")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def canonical_message(fields: Mapping, signed_field_names: FieldNames) -> str:
    names = parse_field_names(signed_field_names)
    if not names or any(not name for name in names):
        raise ValueError("signed_field_names is empty or contains blank entries")
    missing = [name for name in names if fields.get(name) is None]
    if missing:
        raise ValueError(f"signed fields missing from message: {', '.join(missing)}")
    return ",".join(f"{name}={field_text(fields[name])}" for name in names)


def sign(fields: Mapping, signed_field_names: FieldNames, secret_key: str) -> str:
    message = canonical_message(fields, signed_field_names)
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def covers_required_fields(signed_field_names: FieldNames) -> bool:
    names = set(parse_field_names(signed_field_names))
    return all(name in names for name in REQUIRED_SIGNED_FIELDS) and any(name in names for name in CODE_FIELDS)


def verify(message: Mapping, signature, secret_key: str) -> bool:
    """Check ``signature`` against the message's own ``signed_field_names``.

    Returns False, never raises, when the message is malformed: no names, a
    name without a value in the message, a signed set that leaves out the
    amount/uuid/code fields, or an unusable key or signature.
    """
    if not secret_key or not isinstance(signature, str) or not signature:
        return False
    signed_field_names = message.get("signed_field_names")
    if not isinstance(signed_field_names, str) or not signed_field_names.strip():
        return False
    if not covers_required_fields(signed_field_names):
        return False
    try:
        expected = sign(message, signed_field_names, secret_key)
    except (ValueError, TypeError):
        return False
    try:
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii"))
    except UnicodeEncodeError:
        return False
