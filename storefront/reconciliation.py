# storefront/reconciliation.py
"""Settle orders from gateway payment confirmations.

Callbacks arrive at least once (the browser redirect and the webhook may both
fire, and either may retry). Settlement must happen exactly once: the order is
claimed with a conditional ``UPDATE ... WHERE status = 'PENDING'`` and only
the caller that wins the claim decrements stock, in the same transaction.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .gateway import EsewaClient, GatewayUnavailable
from .money import format_amount, parse_amount
from .repository import (
    InsufficientStockError,
    compare_and_swap_order_status,
    decrement_stock,
    find_order_by_transaction_uuid,
    flag_order,
    get_order_status,
)
from .signature import verify
from .state import OrderStatus, is_terminal
from .validator import FAILURE_STATUSES, SUCCESS_STATUSES, GatewayStatus, PaymentMessage

logger = logging.getLogger(__name__)
audit = logging.getLogger("storefront.audit")


class OutcomeKind(str, enum.Enum):
    SETTLED = "SETTLED"
    ALREADY_SETTLED = "ALREADY_SETTLED"
    REJECTED = "REJECTED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    INVENTORY_CONFLICT = "INVENTORY_CONFLICT"


class RejectionReason(str, enum.Enum):
    BAD_SIGNATURE = "BAD_SIGNATURE"
    UNKNOWN_TRANSACTION = "UNKNOWN_TRANSACTION"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class ReconciliationOutcome:
    kind: OutcomeKind
    transaction_uuid: str
    status: Optional[OrderStatus] = None
    reason: Optional[RejectionReason] = None

    @property
    def completed(self) -> bool:
        return (
            self.kind in (OutcomeKind.SETTLED, OutcomeKind.ALREADY_SETTLED)
            and self.status == OrderStatus.COMPLETED
        )


class SettlementUnavailable(Exception):
    """The store failed mid-settlement; the gateway may already hold the money."""

    def __init__(self, transaction_uuid: str):
        super().__init__(f"settlement of {transaction_uuid} could not be completed")
        self.transaction_uuid = transaction_uuid


@dataclass(frozen=True)
class _OrderSnapshot:
    transaction_uuid: str
    status: OrderStatus
    total_amount: Decimal
    created_at: datetime
    needs_attention: bool
    lines: List[Tuple[int, int]]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SettlementService:
    def __init__(self, session: AsyncSession, settings: Settings, gateway: Optional[EsewaClient] = None):
        self.session = session
        self.settings = settings
        self.gateway = gateway

    async def reconcile(self, message: PaymentMessage, source: str = "redirect",
                        now: Optional[datetime] = None) -> ReconciliationOutcome:
        """Decide the fate of the order named by a (validated) gateway message.

        Order of checks: signature, order lookup, idempotency, amount, order
        age, gateway status. Raises SettlementUnavailable when the store fails
        while applying the outcome.
        """
        now = now or datetime.now(timezone.utc)
        uuid = message.transaction_uuid

        if not verify(message.raw, message.signature, self.settings.secret_key):
            audit.warning(
                "payment rejected: bad signature transaction_uuid=%s source=%s signed_field_names=%r status=%s total_amount=%s",
                uuid, source, message.signed_field_names, message.status.value, message.total_amount,
            )
            return ReconciliationOutcome(OutcomeKind.REJECTED, uuid, reason=RejectionReason.BAD_SIGNATURE)

        snapshot = await self._load(uuid)
        if snapshot is None:
            audit.warning("payment rejected: unknown transaction transaction_uuid=%s source=%s", uuid, source)
            return ReconciliationOutcome(OutcomeKind.REJECTED, uuid, reason=RejectionReason.UNKNOWN_TRANSACTION)

        ref_id = message.transaction_code or message.raw.get("ref_id")
        return await self._settle(
            snapshot, message.status, message.total_amount, ref_id,
            source=source, check_ttl=True, now=now,
        )

    async def reconcile_with_gateway(self, transaction_uuid: str,
                                     now: Optional[datetime] = None) -> ReconciliationOutcome:
        """Ask eSewa for the transaction status and settle from its answer.

        The answer comes from our own TLS call to the gateway, so there is no
        signature to check and the order-age limit does not apply; this is the
        path used to retry orders flagged after a failed settlement. NOT_FOUND
        only fails an order once it is past the settlement TTL.
        """
        now = now or datetime.now(timezone.utc)
        snapshot = await self._load(transaction_uuid)
        if snapshot is None:
            audit.warning("status check for unknown transaction transaction_uuid=%s", transaction_uuid)
            return ReconciliationOutcome(
                OutcomeKind.REJECTED, transaction_uuid, reason=RejectionReason.UNKNOWN_TRANSACTION,
            )
        if is_terminal(snapshot.status):
            return ReconciliationOutcome(OutcomeKind.ALREADY_SETTLED, transaction_uuid, status=snapshot.status)
        if self.gateway is None:
            raise GatewayUnavailable("no eSewa client configured")

        # don't hold a transaction open across the HTTP call
        await self.session.commit()
        answer = await self.gateway.check_status(
            transaction_uuid, format_amount(snapshot.total_amount), self.settings.product_code,
        )
        if answer.transaction_uuid != transaction_uuid:
            raise GatewayUnavailable(
                f"status API answered for {answer.transaction_uuid} instead of {transaction_uuid}"
            )
        # eSewa answers NOT_FOUND until the shopper has finished on its page
        if answer.status == GatewayStatus.NOT_FOUND and (snapshot.needs_attention or not self._expired(snapshot, now)):
            logger.info("transaction %s not found at the gateway yet, leaving it pending", transaction_uuid)
            return ReconciliationOutcome(OutcomeKind.AWAITING_PAYMENT, transaction_uuid, status=OrderStatus.PENDING)
        return await self._settle(
            snapshot, answer.status, answer.total_amount, answer.ref_id,
            source="status-check", check_ttl=False, now=now,
        )

    async def _load(self, transaction_uuid: str) -> Optional[_OrderSnapshot]:
        try:
            order = await find_order_by_transaction_uuid(self.session, transaction_uuid)
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("order lookup failed for transaction %s", transaction_uuid)
            raise SettlementUnavailable(transaction_uuid)
        if order is None:
            return None
        # plain values only; ORM attributes expire on rollback
        return _OrderSnapshot(
            transaction_uuid=order.transaction_uuid,
            status=OrderStatus(order.status),
            total_amount=Decimal(order.total_amount),
            created_at=_as_utc(order.created_at),
            needs_attention=bool(order.needs_attention),
            lines=sorted((item.product_id, item.quantity) for item in order.items),
        )

    def _expired(self, snapshot: _OrderSnapshot, now: datetime) -> bool:
        return now - snapshot.created_at > timedelta(seconds=self.settings.settlement_ttl_seconds)

    async def _current_status(self, transaction_uuid: str) -> OrderStatus:
        try:
            return await get_order_status(self.session, transaction_uuid)
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("status lookup failed for transaction %s", transaction_uuid)
            raise SettlementUnavailable(transaction_uuid)

    async def _settle(self, snapshot: _OrderSnapshot, gateway_status: GatewayStatus, reported_amount: str,
                      ref_id: Optional[str], source: str, check_ttl: bool, now: datetime) -> ReconciliationOutcome:
        uuid = snapshot.transaction_uuid

        if is_terminal(snapshot.status):
            logger.info("transaction %s already settled as %s (source=%s)", uuid, snapshot.status.value, source)
            return ReconciliationOutcome(OutcomeKind.ALREADY_SETTLED, uuid, status=snapshot.status)

        amount = parse_amount(reported_amount)
        if amount is None or amount != snapshot.total_amount:
            audit.warning(
                "payment rejected: amount mismatch transaction_uuid=%s source=%s reported=%r expected=%s",
                uuid, source, reported_amount, snapshot.total_amount,
            )
            await self._fail(uuid, RejectionReason.AMOUNT_MISMATCH.value, now)
            return ReconciliationOutcome(OutcomeKind.REJECTED, uuid, reason=RejectionReason.AMOUNT_MISMATCH)

        # a flagged order was already confirmed once and only failed on our side
        if check_ttl and not snapshot.needs_attention and self._expired(snapshot, now):
            audit.warning(
                "payment rejected: order expired transaction_uuid=%s source=%s created_at=%s",
                uuid, source, snapshot.created_at.isoformat(),
            )
            await self._fail(uuid, RejectionReason.EXPIRED.value, now)
            return ReconciliationOutcome(OutcomeKind.REJECTED, uuid, reason=RejectionReason.EXPIRED)

        if gateway_status in FAILURE_STATUSES:
            won = await self._fail(uuid, f"GATEWAY_{gateway_status.value}", now)
            if not won:
                return ReconciliationOutcome(
                    OutcomeKind.ALREADY_SETTLED, uuid, status=await self._current_status(uuid),
                )
            logger.info("transaction %s failed at the gateway with %s", uuid, gateway_status.value)
            return ReconciliationOutcome(OutcomeKind.SETTLED, uuid, status=OrderStatus.FAILED)

        if gateway_status not in SUCCESS_STATUSES:
            logger.info("transaction %s not final at the gateway (%s), leaving it pending", uuid, gateway_status.value)
            return ReconciliationOutcome(OutcomeKind.AWAITING_PAYMENT, uuid, status=OrderStatus.PENDING)

        return await self._complete(snapshot, ref_id, source, now)

    async def _complete(self, snapshot: _OrderSnapshot, ref_id: Optional[str],
                        source: str, now: datetime) -> ReconciliationOutcome:
        uuid = snapshot.transaction_uuid
        try:
            won = await compare_and_swap_order_status(
                self.session, uuid, OrderStatus.PENDING, OrderStatus.COMPLETED,
                settled_at=now, esewa_ref_id=ref_id, needs_attention=False, settlement_error=None,
            )
            if not won:
                await self.session.rollback()
                status = await self._current_status(uuid)
                logger.info("transaction %s was settled concurrently as %s (source=%s)", uuid, status.value, source)
                return ReconciliationOutcome(OutcomeKind.ALREADY_SETTLED, uuid, status=status)
            for product_id, quantity in snapshot.lines:
                await decrement_stock(self.session, product_id, quantity)
            await self.session.commit()
        except InsufficientStockError as e:
            await self.session.rollback()
            audit.error(
                "paid order cannot be fulfilled transaction_uuid=%s source=%s product_id=%s quantity=%s",
                uuid, source, e.product_id, e.quantity,
            )
            await self._flag(uuid, "INSUFFICIENT_STOCK")
            return ReconciliationOutcome(OutcomeKind.INVENTORY_CONFLICT, uuid, status=OrderStatus.PENDING)
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("settlement of paid transaction %s failed (source=%s)", uuid, source)
            await self._flag(uuid, "SETTLEMENT_ERROR")
            raise SettlementUnavailable(uuid)

        logger.info("transaction %s settled as COMPLETED (source=%s, ref_id=%s)", uuid, source, ref_id)
        return ReconciliationOutcome(OutcomeKind.SETTLED, uuid, status=OrderStatus.COMPLETED)

    async def _fail(self, transaction_uuid: str, error: str, now: datetime) -> bool:
        try:
            won = await compare_and_swap_order_status(
                self.session, transaction_uuid, OrderStatus.PENDING, OrderStatus.FAILED,
                settled_at=now, settlement_error=error,
            )
            await self.session.commit()
            return won
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("could not mark transaction %s as FAILED", transaction_uuid)
            raise SettlementUnavailable(transaction_uuid)

    async def _flag(self, transaction_uuid: str, error: str) -> None:
        try:
            await flag_order(self.session, transaction_uuid, error)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("could not flag transaction %s for follow-up (%s)", transaction_uuid, error)
