"""
Order fulfillment state machine.

    unfulfilled -> processing -> shipped -> delivered
    any state before delivered -> cancelled | refunded   (admin only)

Submission moves an order to processing; tracking polls move it forward and
never backwards. Every status change leaves an OrderStatusHistory row.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from dropship_engine.models import FulfillmentStatus, Order, OrderItem, OrderStatusHistory, PaymentStatus
from dropship_engine.settings import Settings, settings as default_settings
from dropship_engine.supplier_client import SupplierError

logger = logging.getLogger(__name__)

STATUS_RANK = {
    FulfillmentStatus.UNFULFILLED.value: 0,
    FulfillmentStatus.PROCESSING.value: 1,
    FulfillmentStatus.SHIPPED.value: 2,
    FulfillmentStatus.DELIVERED.value: 3,
}
TERMINAL = {FulfillmentStatus.CANCELLED.value, FulfillmentStatus.REFUNDED.value}
POLLABLE = {FulfillmentStatus.PROCESSING.value, FulfillmentStatus.SHIPPED.value}


class OrderNotFound(LookupError):
    pass


class InvalidTransition(ValueError):
    pass


@dataclass
class FulfillResult:
    success: bool
    message: str
    skipped: bool = False
    status: Optional[str] = None
    supplier_order_id: Optional[str] = None
    supplier_order_number: Optional[str] = None


@dataclass
class TrackingResult:
    order_id: str
    status: str
    previous_status: str
    changed: bool = False
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    supplier_status: Optional[str] = None
    error: Optional[str] = None


def _text(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _note(message: str) -> str:
    return f"[fulfill] {datetime.now(timezone.utc).isoformat()} {message}"


def next_status(current: str, tracking_number: str | None, supplier_status: str | None) -> str:
    """Status implied by a tracking answer, never behind `current`."""
    target = current
    if supplier_status and "delivered" in supplier_status.lower():
        target = FulfillmentStatus.DELIVERED.value
    elif tracking_number:
        target = FulfillmentStatus.SHIPPED.value
    if STATUS_RANK.get(target, 0) > STATUS_RANK.get(current, 0):
        return target
    return current


@dataclass
class FulfillmentService:
    session: Session
    client: Any
    settings: Settings = field(default_factory=lambda: default_settings)

    def _get_order(self, order_id: Any) -> Order:
        try:
            key = order_id if isinstance(order_id, uuid.UUID) else uuid.UUID(str(order_id))
        except ValueError:
            raise OrderNotFound(f"order {order_id} not found")
        order = self.session.get(Order, key, options=[selectinload(Order.items).selectinload(OrderItem.variant)])
        if order is None:
            raise OrderNotFound(f"order {order_id} not found")
        return order

    def _transition(self, order: Order, to_status: str, source: str, note: str | None = None) -> None:
        self.session.add(
            OrderStatusHistory(
                order_id=order.id,
                from_status=order.fulfillment_status,
                to_status=to_status,
                source=source,
                note=note,
            )
        )
        logger.info(f"[FULFILL] Order {order.order_number}: {order.fulfillment_status} -> {to_status} ({source})")
        order.fulfillment_status = to_status

    def _shipping_payload(self, order: Order, products: list[dict[str, Any]]) -> dict[str, Any]:
        address = order.shipping_address or {}
        country = _text(address.get("country"), "US")
        origin = self.settings.fulfillment_origin_country
        return {
            "orderNumber": _text(order.order_number, f"ORD-{order.id}"),
            "shippingZip": _text(address.get("postal_code"), "00000"),
            "shippingCountryCode": country,
            "shippingCountry": country,
            "shippingProvince": _text(address.get("state"), "Unknown"),
            "shippingCity": _text(address.get("city"), "Unknown"),
            "shippingAddress": _text(
                " ".join(p for p in (address.get("line1"), address.get("line2")) if p), "Unknown Address"
            ),
            "shippingCustomerName": _text(address.get("name"), order.email or "Customer"),
            "shippingPhone": _text(address.get("phone"), "0000000000"),
            "email": order.email,
            "fromCountryCode": origin,
            "logisticName": self.settings.fulfillment_logistic_name,
            "payType": self.settings.fulfillment_pay_type,
            "products": [{**p, "wareHouseCountryCode": origin} for p in products],
        }

    def submit_order(self, order_id: Any) -> FulfillResult:
        """Submit a paid, unfulfilled order to the supplier."""
        order = self._get_order(order_id)

        if order.payment_status != PaymentStatus.PAID.value:
            return FulfillResult(False, "order is not paid", status=order.fulfillment_status)
        if order.fulfillment_status != FulfillmentStatus.UNFULFILLED.value:
            return FulfillResult(
                False,
                f"order already {order.fulfillment_status}",
                status=order.fulfillment_status,
                supplier_order_id=order.supplier_order_id,
                supplier_order_number=order.supplier_order_number,
            )
        if not order.items:
            return FulfillResult(False, "order has no items", status=order.fulfillment_status)

        products: list[dict[str, Any]] = []
        manual = 0
        for item in order.items:
            vid = item.variant.external_ref if item.variant is not None else None
            if vid:
                products.append({"vid": vid, "quantity": item.quantity})
            else:
                manual += 1

        if not products:
            message = "no supplier-linked items; manual fulfillment required"
            order.notes = _note(message)
            self.session.commit()
            logger.info(f"[FULFILL] Order {order.order_number}: {message}")
            return FulfillResult(True, message, skipped=True, status=order.fulfillment_status)

        partial_note = _note(f"{manual} item(s) require manual fulfillment") if manual else None

        try:
            ref = self.client.create_order(self._shipping_payload(order, products))
        except SupplierError as e:
            logger.error(f"[FULFILL] Order {order.order_number} submission failed: {e}")
            order.notes = _note(str(e))
            self.session.commit()
            return FulfillResult(False, str(e), status=order.fulfillment_status)

        order.supplier_order_id = ref.order_id
        order.supplier_order_number = ref.order_number
        if partial_note:
            order.notes = f"{order.notes}\n{partial_note}" if order.notes else partial_note
        self._transition(order, FulfillmentStatus.PROCESSING.value, "submit", note=ref.order_number or ref.order_id)
        self.session.commit()
        return FulfillResult(
            True,
            "supplier order created",
            status=order.fulfillment_status,
            supplier_order_id=ref.order_id,
            supplier_order_number=ref.order_number,
        )

    def poll_tracking(self, order_id: Any) -> TrackingResult:
        order = self._get_order(order_id)
        current = order.fulfillment_status
        result = TrackingResult(
            order_id=str(order.id),
            status=current,
            previous_status=current,
            tracking_number=order.tracking_number,
            carrier=order.carrier,
            supplier_status=order.supplier_status,
        )

        if current not in POLLABLE:
            # delivered and terminal orders are settled; nothing to ask the supplier
            return result
        reference = order.supplier_order_number or order.supplier_order_id
        if not reference:
            result.error = "order has no supplier reference"
            return result

        try:
            info = self.client.get_tracking(reference)
        except SupplierError as e:
            logger.warning(f"[FULFILL] Tracking poll failed for {order.order_number}: {e}")
            result.error = str(e)
            return result

        changed = False
        # an empty answer never clears what we already have
        for attr, value in (
            ("tracking_number", info.tracking_number),
            ("tracking_url", info.tracking_url),
            ("carrier", info.carrier),
            ("supplier_status", info.status),
        ):
            if value and getattr(order, attr) != value:
                setattr(order, attr, value)
                changed = True

        target = next_status(current, order.tracking_number, info.status)
        if target != current:
            self._transition(order, target, "tracking", note=info.status)
            changed = True

        if changed:
            self.session.commit()

        result.changed = changed
        result.status = order.fulfillment_status
        result.tracking_number = order.tracking_number
        result.carrier = order.carrier
        result.supplier_status = order.supplier_status
        return result

    def poll_all_tracking(self) -> list[TrackingResult]:
        order_ids = self.session.execute(
            select(Order.id)
            .where(
                Order.fulfillment_status.in_(POLLABLE),
                (Order.supplier_order_number.is_not(None)) | (Order.supplier_order_id.is_not(None)),
            )
            .order_by(Order.created_at, Order.id)
        ).scalars().all()

        results = [self.poll_tracking(order_id) for order_id in order_ids]
        logger.info(
            f"[FULFILL] Tracking sweep: checked={len(results)}, "
            f"changed={sum(r.changed for r in results)}, failed={sum(bool(r.error) for r in results)}"
        )
        return results

    def _close(self, order_id: Any, to_status: str, reason: str | None) -> Order:
        order = self._get_order(order_id)
        if order.fulfillment_status == FulfillmentStatus.DELIVERED.value or order.fulfillment_status in TERMINAL:
            raise InvalidTransition(f"cannot move a {order.fulfillment_status} order to {to_status}")
        self._transition(order, to_status, "admin", note=reason)
        if reason:
            order.notes = _note(reason)
        return order

    def cancel_order(self, order_id: Any, reason: str | None = None) -> Order:
        order = self._close(order_id, FulfillmentStatus.CANCELLED.value, reason)
        self.session.commit()
        return order

    def refund_order(self, order_id: Any, reason: str | None = None) -> Order:
        order = self._close(order_id, FulfillmentStatus.REFUNDED.value, reason)
        order.payment_status = PaymentStatus.REFUNDED.value
        self.session.commit()
        return order
