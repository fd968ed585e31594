"""
Typed records for supplier platform payloads.

The supplier returns loosely shaped JSON whose fields come and go between
endpoints (list vs. detail) and product types. Every record here is built with
`from_payload`, which defaults each missing or malformed field explicitly so
the sync logic never has to inspect raw dicts.
"""

from __future__ import annotations

import json
import math
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def parse_price_value(value: Any) -> float | None:
    """Parse a supplier price; ranges like "3.10--5.40" resolve to the upper bound."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = str(value).strip()
    if "--" in text:
        text = text.split("--")[-1].strip()
    try:
        parsed = float(text)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def parse_weight_grams(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    numbers = [float(n) for n in re.findall(r"\d+(?:\.\d+)?", str(value))]
    if not numbers:
        return None
    weight = max(numbers)
    return weight if weight > 0 else None


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and isinstance(payload.get("data"), (dict, list)):
        return payload["data"]
    return payload


def extract_images(payload: dict[str, Any]) -> list[str]:
    images: list[str] = []
    image_set = payload.get("productImageSet")
    product_image = payload.get("productImage")
    if isinstance(image_set, list):
        images = [str(url) for url in image_set]
    elif isinstance(product_image, list):
        images = [str(url) for url in product_image]
    elif isinstance(product_image, str) and product_image:
        try:
            parsed = json.loads(product_image)
            images = [str(url) for url in parsed] if isinstance(parsed, list) else [product_image]
        except ValueError:
            images = [product_image]

    for variant in payload.get("variants") or []:
        image = (variant or {}).get("variantImage")
        if image and image not in images:
            images.append(image)

    return [url for url in images if url.startswith("http")]


class SupplierVariant(BaseModel):
    vid: str
    name: str | None = None
    variant_key: str | None = None
    sell_price: float | None = None
    image: str | None = None
    weight_grams: float | None = None
    stock: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SupplierVariant | None":
        vid = _text(payload.get("vid"))
        if not vid:
            return None
        stock = _first(payload, "inventoryNum", "variantStock", "stock")
        return cls(
            vid=vid,
            name=_text(_first(payload, "variantNameEn", "variantName")),
            variant_key=_text(payload.get("variantKey")),
            sell_price=parse_price_value(payload.get("variantSellPrice")),
            image=_text(payload.get("variantImage")),
            weight_grams=parse_weight_grams(payload.get("variantWeight")),
            stock=_int(stock) if stock is not None else None,
        )


class SupplierProduct(BaseModel):
    pid: str
    name: str | None = None
    description: str = ""
    images: list[str] = Field(default_factory=list)
    sell_price: float | None = None
    weight_grams: float | None = None
    category_id: str | None = None
    source_from: int | None = None
    delivery_cycle: str | None = None
    variants: list[SupplierVariant] = Field(default_factory=list)
    has_detail: bool = False
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SupplierProduct":
        payload = _unwrap(payload) if isinstance(payload, dict) else {}
        pid = _text(payload.get("pid")) or _text(payload.get("id"))
        if not pid:
            raise ValueError("supplier product payload has no pid")

        variants = []
        for raw_variant in payload.get("variants") or []:
            if isinstance(raw_variant, dict):
                variant = SupplierVariant.from_payload(raw_variant)
                if variant:
                    variants.append(variant)

        description = str(payload.get("description") or "")
        description = re.sub(r"<img[^>]*>", "", description, flags=re.IGNORECASE)
        description = re.sub(r"<p>\s*</p>", "", description, flags=re.IGNORECASE).strip()

        source_from = payload.get("sourceFrom")
        return cls(
            pid=pid,
            name=_text(_first(payload, "productNameEn", "nameEn", "productName")),
            description=description,
            images=extract_images(payload),
            sell_price=parse_price_value(_first(payload, "sellPrice", "nowPrice")),
            weight_grams=parse_weight_grams(_first(payload, "productWeight", "packingWeight")),
            category_id=_text(payload.get("categoryId")),
            source_from=_int(source_from) if source_from is not None else None,
            delivery_cycle=_text(_first(payload, "deliveryCycle", "delivery_cycle")),
            variants=variants,
            # list entries carry no description; detail responses always do
            has_detail="description" in payload and bool(variants),
            raw=payload,
        )


class WarehouseStock(BaseModel):
    country_code: str
    quantity: int = 0

    @classmethod
    def list_from_payload(cls, payload: Any) -> list["WarehouseStock"]:
        payload = _unwrap(payload)
        if isinstance(payload, dict):
            entries = payload.get("inventories") or []
        elif isinstance(payload, list):
            entries = payload
        else:
            entries = []

        stocks = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            country = _text(_first(entry, "countryCode", "areaEn"))
            if not country:
                continue
            quantity = _first(entry, "totalInventoryNum", "totalInventory", "storageNum")
            stocks.append(cls(country_code=country.upper(), quantity=max(0, _int(quantity))))
        return stocks


class FreightOption(BaseModel):
    carrier: str
    price: float
    estimated_days: str | None = None

    @classmethod
    def list_from_payload(cls, payload: Any) -> list["FreightOption"]:
        options = []
        for entry in _unwrap(payload) or []:
            if not isinstance(entry, dict):
                continue
            price = parse_price_value(entry.get("logisticPrice"))
            carrier = _text(entry.get("logisticName"))
            if price is None or not carrier:
                continue
            options.append(cls(carrier=carrier, price=price, estimated_days=_text(entry.get("logisticAging"))))
        return options


class SupplierOrderRef(BaseModel):
    order_id: str | None = None
    order_number: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "SupplierOrderRef":
        payload = _unwrap(payload) if isinstance(payload, dict) else {}
        nested = payload.get("order") if isinstance(payload.get("order"), dict) else {}
        order_id = _first(payload, "orderId", "order_id", "id") or _first(nested, "orderId", "order_id")
        order_number = _first(payload, "orderNumber", "order_number", "number") or _first(
            nested, "orderNumber", "order_number"
        )
        return cls(order_id=_text(order_id), order_number=_text(order_number), raw=payload)


class TrackingInfo(BaseModel):
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    status: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "TrackingInfo":
        payload = _unwrap(payload)
        info: Any = payload
        if isinstance(payload, list):
            info = payload[0] if payload else {}
        elif isinstance(payload, dict):
            for key in ("trackingInfoList", "trackingInfo", "logisticTrackingInfo"):
                if isinstance(payload.get(key), list):
                    info = payload[key][0] if payload[key] else {}
                    break
        if not isinstance(info, dict):
            info = {}
        outer = payload if isinstance(payload, dict) else {}

        return cls(
            tracking_number=_text(_first(info, "trackingNumber", "trackingNo", "tracking_no", "trackNumber")),
            tracking_url=_text(_first(info, "trackingUrl", "tracking_url", "trackUrl", "logisticUrl")),
            carrier=_text(_first(info, "logisticName", "carrier", "logisticCompany")),
            status=_text(
                _first(info, "status", "trackingStatus", "logisticStatus")
                or _first(outer, "status", "logisticStatus")
            ),
        )


class SupplierReview(BaseModel):
    comment_id: str
    score: int = 0
    comment: str = ""
    user: str | None = None
    commented_at: datetime | None = None
    images: list[str] = Field(default_factory=list)
    country_code: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SupplierReview | None":
        comment_id = _text(_first(payload, "commentId", "id"))
        if not comment_id:
            return None
        commented_at = None
        raw_date = payload.get("commentDate")
        if isinstance(raw_date, (int, float)):
            commented_at = datetime.fromtimestamp(raw_date / 1000.0, tz=timezone.utc)
        elif isinstance(raw_date, str) and raw_date:
            try:
                commented_at = datetime.fromisoformat(raw_date.replace("Z", "+00:00"))
            except ValueError:
                commented_at = None
        images = payload.get("commentUrls")
        return cls(
            comment_id=comment_id,
            score=_int(payload.get("score")),
            comment=str(payload.get("comment") or "").strip(),
            user=_text(payload.get("commentUser")),
            commented_at=commented_at,
            images=[str(url) for url in images] if isinstance(images, list) else [],
            country_code=_text(payload.get("countryCode")),
        )


class ProductPage(BaseModel):
    items: list[SupplierProduct] = Field(default_factory=list)
    page: int = 1
    size: int = 0
    total: int = 0
    # entries as returned, including ones dropped for a missing pid
    raw_count: int = 0


class ReviewPage(BaseModel):
    items: list[SupplierReview] = Field(default_factory=list)
    total: int = 0
