# storefront/orders.py
import logging
import math
import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import Principal, get_current_principal
from .config import Settings, get_settings
from .database import get_session
from .models import Order, OrderItem, Product
from .money import format_amount, round_half_up
from .schemas import CheckoutOut, CheckoutRequest, OrderOut, OrderPage
from .signature import sign
from .state import OrderStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

SHIPPING_CHARGE = Decimal("500")
TAX_RATE = Decimal("0.13")
SIGNED_FIELD_NAMES = "total_amount,transaction_uuid,product_code"


# ✅ Checkout: create a PENDING order and the signed eSewa form for it
@router.post("", response_model=CheckoutOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: CheckoutRequest,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    settings: Settings = Depends(get_settings),
):
    # the same product twice in one request counts as one line
    quantities = {}
    for item in payload.items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

    res = await session.execute(select(Product).where(Product.id.in_(list(quantities))))
    products = {p.id: p for p in res.scalars().all()}

    subtotal = Decimal("0")
    lines = []
    for product_id, quantity in quantities.items():
        product = products.get(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product with ID {product_id} not found")
        # stock is only reserved at settlement; this is an early sanity check
        if product.stock < quantity:
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {product.name}")
        price = Decimal(product.price)
        subtotal += price * quantity
        lines.append(OrderItem(product_id=product_id, quantity=quantity, unit_price=price))

    shipping = SHIPPING_CHARGE if subtotal > 0 else Decimal("0")
    tax = round_half_up(subtotal * TAX_RATE)
    total = subtotal + shipping + tax

    order = Order(
        user_id=principal.user_id,
        transaction_uuid=str(uuid.uuid4()),
        subtotal=subtotal,
        shipping_charge=shipping,
        tax=tax,
        total_amount=total,
        status=OrderStatus.PENDING.value,
        items=lines,
    )
    session.add(order)
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("could not create order for user %s", principal.user_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server error while creating order")

    total_text = format_amount(total)
    fields = {
        "amount": total_text,
        "tax_amount": "0",  # tax is already part of total_amount
        "total_amount": total_text,
        "transaction_uuid": order.transaction_uuid,
        "product_code": settings.product_code,
        "product_service_charge": "0",
        "product_delivery_charge": "0",
        "success_url": settings.success_url,
        "failure_url": settings.failure_url,
        "signed_field_names": SIGNED_FIELD_NAMES,
    }
    fields["signature"] = sign(fields, SIGNED_FIELD_NAMES, settings.secret_key)

    logger.info("order %s created for user %s, transaction %s total %s",
                order.id, principal.user_id, order.transaction_uuid, total_text)
    return CheckoutOut(
        order_id=order.id,
        transaction_uuid=order.transaction_uuid,
        total_amount=total_text,
        form_action=settings.form_url,
        fields=fields,
    )


# 🧾 Orders of the current user
@router.get("/my-orders", response_model=OrderPage)
async def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
):
    count_res = await session.execute(
        select(func.count()).select_from(Order).where(Order.user_id == principal.user_id)
    )
    count = count_res.scalar_one()
    res = await session.execute(
        select(Order)
        .where(Order.user_id == principal.user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(limit * (page - 1))
    )
    return OrderPage(
        orders=[OrderOut.model_validate(o) for o in res.scalars().all()],
        page=page,
        pages=math.ceil(count / limit),
        count=count,
    )


# 📦 One order; other users' orders look like missing ones
@router.get("/{order_id}", response_model=OrderOut)
async def get_my_order(
    order_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
):
    res = await session.execute(select(Order).where(Order.id == order_id, Order.user_id == principal.user_id))
    order = res.scalar_one_or_none()
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order
