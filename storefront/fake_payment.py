# storefront/fake_payment.py
"""Fake eSewa confirmations for local testing.

Builds the payload eSewa would send back for a given scenario, signed with
the configured secret, plus the base64 ``data`` blob of the browser redirect.
"""
import base64
import enum
import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from .signature import sign

# the field list eSewa signs in its success response
RESPONSE_SIGNED_FIELDS = "transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names"


class FakePaymentScenario(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_AMOUNT = "invalid_amount"
    EXPIRED_TRANSACTION = "expired_transaction"


def generate_transaction_code() -> str:
    return secrets.token_hex(4).upper()[:7]


def build_payment(
    scenario: FakePaymentScenario,
    transaction_uuid: str,
    total_amount: str,
    secret_key: str,
    product_code: str = "EPAYTEST",
    transaction_code: Optional[str] = None,
    with_timestamp: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    status = {
        FakePaymentScenario.FAILURE: "FAILED",
        FakePaymentScenario.PENDING: "PENDING",
    }.get(scenario, "COMPLETE")
    payload = {
        "transaction_code": transaction_code or generate_transaction_code(),
        "status": status,
        "total_amount": "0" if scenario == FakePaymentScenario.INVALID_AMOUNT else total_amount,
        "transaction_uuid": transaction_uuid,
        "product_code": product_code,
        "signed_field_names": RESPONSE_SIGNED_FIELDS,
    }
    if with_timestamp or scenario == FakePaymentScenario.EXPIRED_TRANSACTION:
        stamp = now - timedelta(minutes=10) if scenario == FakePaymentScenario.EXPIRED_TRANSACTION else now
        payload["timestamp"] = stamp.isoformat()
        payload["signed_field_names"] = RESPONSE_SIGNED_FIELDS + ",timestamp"

    if scenario == FakePaymentScenario.INVALID_SIGNATURE:
        payload["signature"] = "invalid_signature_for_testing"
    else:
        payload["signature"] = sign(payload, payload["signed_field_names"], secret_key)
    return payload


def encode_redirect_data(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
