# storefront/gateway.py
import asyncio
import logging
from typing import Optional

import httpx
from pydantic import BaseModel

from .validator import GatewayStatus

logger = logging.getLogger(__name__)


class GatewayUnavailable(Exception):
    pass


class GatewayTransactionStatus(BaseModel):
    transaction_uuid: str
    product_code: str
    total_amount: str
    status: GatewayStatus
    ref_id: Optional[str] = None


class EsewaClient:
    """Server-to-server client for eSewa's transaction status API."""

    def __init__(self, status_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.status_url = status_url
        self.timeout = timeout
        self.transport = transport

    async def _get_with_retry(self, params: dict, max_attempts: int = 2, base_delay: float = 0.3) -> httpx.Response:
        # one retry at most; a repeated status query has no side effects but we
        # still don't want to hammer the gateway
        last_exc: Optional[Exception] = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(1, max_attempts + 1):
                try:
                    resp = await client.get(self.status_url, params=params)
                    if resp.status_code < 500:
                        return resp
                    last_exc = GatewayUnavailable(f"status API returned {resp.status_code}")
                except httpx.RequestError as e:
                    last_exc = e
                if attempt < max_attempts:
                    logger.info("eSewa status check failed (%s), retrying", last_exc)
                    await asyncio.sleep(base_delay * attempt)
        raise GatewayUnavailable(f"eSewa status API unreachable: {last_exc}")

    async def check_status(self, transaction_uuid: str, total_amount: str, product_code: str) -> GatewayTransactionStatus:
        params = {
            "product_code": product_code,
            "total_amount": total_amount,
            "transaction_uuid": transaction_uuid,
        }
        resp = await self._get_with_retry(params)
        if resp.status_code != 200:
            raise GatewayUnavailable(f"status API returned {resp.status_code}: {resp.text[:200]}")
        try:
            body = resp.json()
            return GatewayTransactionStatus(
                transaction_uuid=str(body["transaction_uuid"]),
                product_code=str(body.get("product_code") or product_code),
                total_amount=str(body["total_amount"]),
                status=GatewayStatus(body["status"]),
                ref_id=body.get("ref_id") or None,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayUnavailable(f"unexpected status API response: {e}") from e
