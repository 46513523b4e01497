"""Post a fake eSewa confirmation to a running storefront.

Usage:
    python scripts/send_fake_payment.py <transaction_uuid> <total_amount> [scenario]
        [--target verify|webhook|callback] [--base-url http://localhost:8000]

Scenarios: success (default), failure, pending, invalid_signature,
invalid_amount, expired_transaction. The payload is signed with
ESEWA_SECRET_KEY, so point this at a server running with the same value.
"""
import argparse
import sys
from pathlib import Path

import httpx

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storefront.config import settings
from storefront.fake_payment import FakePaymentScenario, build_payment, encode_redirect_data


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("transaction_uuid")
    parser.add_argument("total_amount")
    parser.add_argument("scenario", nargs="?", default=FakePaymentScenario.SUCCESS.value,
                        choices=[s.value for s in FakePaymentScenario])
    parser.add_argument("--target", choices=("verify", "webhook", "callback"), default="verify")
    parser.add_argument("--base-url", default="http://localhost:8000")
    args = parser.parse_args(argv)

    payload = build_payment(
        FakePaymentScenario(args.scenario), args.transaction_uuid, args.total_amount,
        settings.secret_key, product_code=settings.product_code,
    )
    data = encode_redirect_data(payload)
    base = args.base_url.rstrip("/")

    try:
        if args.target == "verify":
            r = httpx.post(f"{base}/api/orders/verify-payment", json={"data": data}, timeout=10.0)
        elif args.target == "webhook":
            r = httpx.post(f"{base}/api/orders/esewa-webhook", data=payload, timeout=10.0)
        else:
            r = httpx.get(f"{base}/api/orders/esewa/callback", params={"data": data}, timeout=10.0)
    except httpx.RequestError as e:
        print(f"Storefront unreachable: {e}")
        return 1

    print(f"{r.status_code} {r.headers.get('location') or r.text}")
    return 0 if r.status_code < 400 else 1


if __name__ == "__main__":
    sys.exit(main())
