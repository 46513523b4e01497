# storefront/validator.py
"""Shape and freshness checks for gateway payment confirmations.

eSewa redirects the browser to ``success_url?data=<base64 JSON>``; webhooks
post the same fields directly. Everything here is untrusted until the
reconciliation engine has verified the signature.
"""
import base64
import binascii
import enum
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("transaction_uuid", "status", "total_amount", "signature", "signed_field_names")


class GatewayStatus(str, enum.Enum):
    COMPLETE = "COMPLETE"
    PENDING = "PENDING"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    NOT_FOUND = "NOT_FOUND"
    FULL_REFUND = "FULL_REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    AMBIGUOUS = "AMBIGUOUS"


SUCCESS_STATUSES = frozenset({GatewayStatus.COMPLETE})
FAILURE_STATUSES = frozenset({
    GatewayStatus.FAILED,
    GatewayStatus.CANCELED,
    GatewayStatus.NOT_FOUND,
    GatewayStatus.FULL_REFUND,
})


class ValidationErrorKind(str, enum.Enum):
    MALFORMED_ENCODING = "MALFORMED_ENCODING"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_STATUS = "INVALID_STATUS"
    STALE_TRANSACTION = "STALE_TRANSACTION"


class PaymentValidationError(Exception):
    def __init__(self, kind: ValidationErrorKind, detail: str = ""):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


class PaymentMessage(BaseModel):
    transaction_uuid: str
    status: GatewayStatus
    total_amount: str
    signed_field_names: str
    signature: str
    transaction_code: Optional[str] = None
    product_code: Optional[str] = None
    timestamp: Optional[datetime] = None
    # the fields exactly as received; signatures are computed over these
    raw: Dict[str, Any]

    @property
    def is_success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def is_failure(self) -> bool:
        return self.status in FAILURE_STATUSES


def decode_payload(raw_base64: str) -> Dict[str, Any]:
    if not isinstance(raw_base64, str) or not raw_base64.strip():
        raise PaymentValidationError(ValidationErrorKind.MALFORMED_ENCODING, "empty payload")
    # '+' turns into ' ' when the query string was not percent-encoded
    text = raw_base64.strip().replace(" ", "+")
    text += "=" * (-len(text) % 4)
    try:
        decoded = base64.b64decode(text, validate=True)
        payload = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise PaymentValidationError(ValidationErrorKind.MALFORMED_ENCODING, str(exc)) from exc
    if not isinstance(payload, dict):
        raise PaymentValidationError(ValidationErrorKind.MALFORMED_ENCODING, "payload is not a JSON object")
    return payload


def parse_timestamp(value) -> datetime:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e12 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError(f"unsupported timestamp {value!r}")


def _text(value) -> str:
    if value is None:
        return ""
    return value.strip() if isinstance(value, str) else str(value)


def validate_fields(
    fields: Mapping[str, Any],
    max_age_seconds: int = 300,
    now: Optional[datetime] = None,
    received_timestamp: Optional[str] = None,
) -> PaymentMessage:
    """Check a decoded confirmation and return it as a PaymentMessage.

    Raises PaymentValidationError for a missing/empty required field, a status
    outside GatewayStatus, or a timestamp (in the payload, or ``received_timestamp``
    from a header) more than ``max_age_seconds`` away from ``now``. The
    signature is not checked here.
    """
    for name in REQUIRED_FIELDS:
        if not _text(fields.get(name)):
            raise PaymentValidationError(ValidationErrorKind.MISSING_FIELD, name)

    try:
        status = GatewayStatus(_text(fields["status"]))
    except ValueError:
        raise PaymentValidationError(ValidationErrorKind.INVALID_STATUS, _text(fields["status"]))

    timestamp = None
    raw_timestamp = fields.get("timestamp")
    if raw_timestamp is None or raw_timestamp == "":
        raw_timestamp = received_timestamp
    if raw_timestamp is not None and raw_timestamp != "":
        try:
            timestamp = parse_timestamp(raw_timestamp)
        except (ValueError, OverflowError, OSError) as exc:
            raise PaymentValidationError(ValidationErrorKind.MALFORMED_ENCODING, f"bad timestamp: {exc}") from exc
        now = now or datetime.now(timezone.utc)
        age = abs((now - timestamp).total_seconds())
        if age > max_age_seconds:
            raise PaymentValidationError(
                ValidationErrorKind.STALE_TRANSACTION,
                f"timestamp {timestamp.isoformat()} is {int(age)}s away from now",
            )

    return PaymentMessage(
        transaction_uuid=_text(fields["transaction_uuid"]),
        status=status,
        total_amount=_text(fields["total_amount"]),
        signed_field_names=_text(fields["signed_field_names"]),
        signature=_text(fields["signature"]),
        transaction_code=_text(fields.get("transaction_code")) or None,
        product_code=_text(fields.get("product_code")) or None,
        timestamp=timestamp,
        raw=dict(fields),
    )


def validate(
    raw_base64: str,
    max_age_seconds: int = 300,
    now: Optional[datetime] = None,
    received_timestamp: Optional[str] = None,
) -> PaymentMessage:
    """Decode the ``data`` query parameter of a gateway redirect and validate it."""
    fields = decode_payload(raw_base64)
    message = validate_fields(fields, max_age_seconds=max_age_seconds, now=now, received_timestamp=received_timestamp)
    logger.debug("decoded payment message for transaction %s", message.transaction_uuid)
    return message
