import logging
import uuid
from dataclasses import asdict
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from dropship_engine.db import get_session
from dropship_engine.models import Product
from dropship_engine.schemas.config import PricingConfig, ShippingConfig
from dropship_engine.services.catalog_sync import CatalogSyncEngine, SyncOptions
from dropship_engine.services.config_store import (
    load_pricing_config,
    load_shipping_config,
    save_pricing_config,
    save_shipping_config,
)
from dropship_engine.services.fulfillment import FulfillmentService, InvalidTransition, OrderNotFound
from dropship_engine.services.pricing import reprice_active_products
from dropship_engine.services.review_sync import sync_reviews_for_all, sync_reviews_for_product
from dropship_engine.services.shipping import quote_shipping
from dropship_engine.services.stock_check import check_stock, refresh_stock, sync_delivery_estimates
from dropship_engine.services.sync_runner import SyncAlreadyRunning
from dropship_engine.supplier_client import SupplierAuthError, SupplierClient, SupplierError, get_supplier_client

router = APIRouter()
logger = logging.getLogger(__name__)


class SyncIn(BaseModel):
    category_id: Optional[str] = None
    warehouse: Literal["US", "CN", "all"] = "all"
    page_size: Optional[int] = Field(default=None, ge=1, le=200)
    max_pages: Optional[int] = Field(default=None, ge=1)
    resync: bool = False
    quote_freight: bool = True


class RepriceIn(BaseModel):
    config: Optional[dict[str, Any]] = None


class LineItemIn(BaseModel):
    vid: str
    quantity: int = Field(default=1, ge=1)


class ShippingEstimateIn(BaseModel):
    weight_grams: Optional[float] = None
    subtotal: float = Field(default=0, ge=0)
    items: list[LineItemIn] = Field(default_factory=list)


class ReasonIn(BaseModel):
    reason: Optional[str] = None


class StockCheckIn(BaseModel):
    pid: Optional[str] = None
    product_ids: Optional[list[uuid.UUID]] = None


class DeliverySyncIn(BaseModel):
    product_ids: Optional[list[uuid.UUID]] = None


class ReviewSyncIn(BaseModel):
    product_id: Optional[uuid.UUID] = None


def _supplier_failure(e: SupplierAuthError) -> HTTPException:
    logger.error(f"[ADMIN] Supplier authorization failed: {e}")
    return HTTPException(status_code=502, detail=f"supplier authorization failed: {e}")


def _merge(current: BaseModel, patch: dict[str, Any], model: type[BaseModel]) -> BaseModel:
    try:
        return model.model_validate({**current.model_dump(), **patch})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))


@router.post("/sync")
def run_sync(
    payload: SyncIn,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    options = SyncOptions(**payload.model_dump())
    try:
        result = CatalogSyncEngine(session, client).run(options)
    except SyncAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SupplierAuthError as e:
        raise _supplier_failure(e)
    return asdict(result)


@router.post("/reprice")
def reprice(payload: RepriceIn, session: Session = Depends(get_session)) -> dict:
    try:
        return reprice_active_products(session, override=payload.config)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))


@router.get("/pricing-config")
def get_pricing_config(session: Session = Depends(get_session)) -> PricingConfig:
    return load_pricing_config(session)


@router.put("/pricing-config")
def update_pricing_config(patch: dict[str, Any], session: Session = Depends(get_session)) -> PricingConfig:
    config = _merge(load_pricing_config(session), patch, PricingConfig)
    return save_pricing_config(session, config)


@router.get("/shipping-config")
def get_shipping_config(session: Session = Depends(get_session)) -> ShippingConfig:
    return load_shipping_config(session)


@router.put("/shipping-config")
def update_shipping_config(patch: dict[str, Any], session: Session = Depends(get_session)) -> ShippingConfig:
    config = _merge(load_shipping_config(session), patch, ShippingConfig)
    return save_shipping_config(session, config)


@router.post("/shipping/estimate")
def estimate_shipping(
    payload: ShippingEstimateIn,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    config = load_shipping_config(session)
    items = [item.model_dump() for item in payload.items]
    return asdict(quote_shipping(client, items, payload.weight_grams, payload.subtotal, config))


@router.post("/orders/tracking")
def poll_all_tracking(
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    results = FulfillmentService(session, client).poll_all_tracking()
    return {
        "checked": len(results),
        "changed": sum(r.changed for r in results),
        "failed": sum(bool(r.error) for r in results),
        "results": [asdict(r) for r in results],
    }


@router.post("/orders/{order_id}/fulfill")
def fulfill_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    try:
        return asdict(FulfillmentService(session, client).submit_order(order_id))
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/orders/{order_id}/tracking")
def poll_tracking(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    try:
        return asdict(FulfillmentService(session, client).poll_tracking(order_id))
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


def _order_summary(order) -> dict:
    return {
        "id": str(order.id),
        "order_number": order.order_number,
        "fulfillment_status": order.fulfillment_status,
        "payment_status": order.payment_status,
    }


@router.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: uuid.UUID,
    payload: Optional[ReasonIn] = None,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    try:
        order = FulfillmentService(session, client).cancel_order(order_id, payload.reason if payload else None)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _order_summary(order)


@router.post("/orders/{order_id}/refund")
def refund_order(
    order_id: uuid.UUID,
    payload: Optional[ReasonIn] = None,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    try:
        order = FulfillmentService(session, client).refund_order(order_id, payload.reason if payload else None)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _order_summary(order)


@router.post("/stock/check")
def stock_check(
    payload: StockCheckIn,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    if payload.pid:
        return asdict(check_stock(client, payload.pid))
    try:
        summary = refresh_stock(session, client, product_ids=payload.product_ids)
    except SupplierAuthError as e:
        raise _supplier_failure(e)
    return {**summary, "reports": [asdict(r) for r in summary["reports"]]}


@router.post("/shipping/sync")
def sync_delivery(
    payload: DeliverySyncIn,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    try:
        return sync_delivery_estimates(session, client, product_ids=payload.product_ids)
    except SupplierAuthError as e:
        raise _supplier_failure(e)


@router.post("/reviews/sync")
def sync_reviews(
    payload: ReviewSyncIn,
    session: Session = Depends(get_session),
    client: SupplierClient = Depends(get_supplier_client),
) -> dict:
    try:
        if payload.product_id is None:
            return sync_reviews_for_all(session, client)

        product = session.get(Product, payload.product_id)
        if product is None or not product.external_ref:
            raise HTTPException(status_code=404, detail="supplier-linked product not found")
        return asdict(sync_reviews_for_product(session, client, product))
    except SupplierAuthError as e:
        raise _supplier_failure(e)
    except SupplierError as e:
        raise HTTPException(status_code=502, detail=str(e))
