"""Pytest configuration and fixtures."""

from typing import Any, Optional

import pytest
from sqlalchemy import JSON, create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dropship_engine.models import Base
from dropship_engine.schemas.supplier import (
    FreightOption,
    ProductPage,
    ReviewPage,
    SupplierOrderRef,
    SupplierProduct,
    SupplierReview,
    TrackingInfo,
    WarehouseStock,
)
from dropship_engine.settings import Settings
from dropship_engine.supplier_client import SupplierBusinessError


def _patch_jsonb_to_json(base):
    """SQLite has no JSONB; swap it for JSON on the test metadata."""
    for table in base.metadata.sorted_tables:
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()


_patch_jsonb_to_json(Base)


def _sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # let SQLAlchemy drive transactions so SAVEPOINT (begin_nested) works on pysqlite
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="function")
def session() -> Session:
    """Fresh in-memory database per test."""
    engine = _sqlite_engine()
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = factory()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        supplier_api_key="test-key",
        supplier_api_base_url="https://supplier.test/api2.0/v1",
        supplier_min_request_interval=0,
        review_sync_delay=0,
        stock_check_delay=0,
    )


# ----------------------------------------------------------------------
# supplier payload builders
# ----------------------------------------------------------------------


def variant_payload(
    vid: str,
    key: Optional[str],
    price: float = 10.0,
    stock: int = 5,
    name: Optional[str] = None,
    image: Optional[str] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "vid": vid,
        "variantKey": key,
        "variantSellPrice": price,
        "inventoryNum": stock,
    }
    if name:
        payload["variantNameEn"] = name
    if image:
        payload["variantImage"] = image
    return payload


def product_payload(
    pid: str,
    name: Optional[str] = "Cotton Tee",
    price: Any = 10.0,
    weight: Any = 300,
    variants: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    if variants is None:
        variants = [
            variant_payload(f"{pid}-V1", "Black-M", price, image="https://img.test/black.jpg"),
            variant_payload(f"{pid}-V2", "White-L", price, image="https://img.test/white.jpg"),
        ]
    return {
        "pid": pid,
        "productNameEn": name,
        "sellPrice": price,
        "productWeight": weight,
        "productImage": f'["https://img.test/{pid}.jpg"]',
        "categoryId": "CAT-1",
        "description": "<p>Soft cotton</p><img src='x.jpg'>",
        "variants": variants,
    }


LISTING_FIELDS = (
    "pid",
    "productNameEn",
    "sellPrice",
    "productWeight",
    "productImage",
    "categoryId",
    "sourceFrom",
    "deliveryCycle",
)


class FakeSupplierClient:
    """
    In-memory stand-in for SupplierClient with the same method surface.

    `failures` maps "method" or "method:key" to an exception raised on that call.
    Pids in `malformed` come back from the listing without a pid and are
    dropped the way the real client drops them; `max_page_size` caps the
    page size the listing honours.
    """

    def __init__(self) -> None:
        self.api_calls = 0
        self.catalog: dict[str, dict[str, Any]] = {}
        self.stock: dict[str, list[dict[str, Any]]] = {}
        self.freight: list[dict[str, Any]] = [
            {"logisticName": "USPS+", "logisticPrice": 4.99, "logisticAging": "5-8"},
            {"logisticName": "CJPacket", "logisticPrice": 6.20, "logisticAging": "7-12"},
        ]
        self.tracking: dict[str, dict[str, Any]] = {}
        self.reviews: dict[str, list[dict[str, Any]]] = {}
        self.order_ref: dict[str, Any] = {"orderId": "CJ-1", "orderNumber": "CJ-ORD-1"}
        self.orders: list[dict[str, Any]] = []
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, Any]] = []
        self.malformed: set[str] = set()
        self.max_page_size: Optional[int] = None

    def add_product(self, payload: dict[str, Any], stock: Optional[list[dict[str, Any]]] = None) -> None:
        self.catalog[payload["pid"]] = payload
        self.stock[payload["pid"]] = stock if stock is not None else [{"countryCode": "CN", "totalInventoryNum": 100}]

    def _hit(self, method: str, key: Any = None) -> None:
        self.api_calls += 1
        self.calls.append((method, key))
        error = self.failures.get(f"{method}:{key}") or self.failures.get(method)
        if error is not None:
            raise error

    def calls_to(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def authenticate(self) -> str:
        error = self.failures.get("authenticate")
        if error is not None:
            raise error
        return "fake-token"

    def list_products(self, page=1, size=200, category_id=None, country_code=None) -> ProductPage:
        self._hit("list_products", page)
        entries = list(self.catalog.values())
        if category_id:
            entries = [e for e in entries if e.get("categoryId") == category_id]
        if self.max_page_size:
            size = min(size, self.max_page_size)
        chunk = entries[(page - 1) * size: page * size]
        items = [
            SupplierProduct.from_payload({k: e[k] for k in LISTING_FIELDS if k in e})
            for e in chunk
            if e["pid"] not in self.malformed
        ]
        return ProductPage(items=items, page=page, size=size, total=len(entries), raw_count=len(chunk))

    def get_product(self, pid: str) -> SupplierProduct:
        self._hit("get_product", pid)
        if pid not in self.catalog:
            raise SupplierBusinessError("not_found", f"product {pid} not found")
        return SupplierProduct.from_payload(self.catalog[pid])

    def get_stock(self, pid: str) -> list[WarehouseStock]:
        self._hit("get_stock", pid)
        return WarehouseStock.list_from_payload(self.stock.get(pid, []))

    def freight_quote(self, items, destination_country="US", origin_country=None) -> list[FreightOption]:
        self._hit("freight_quote", items[0]["vid"] if items else None)
        return FreightOption.list_from_payload(self.freight)

    def create_order(self, payload: dict[str, Any]) -> SupplierOrderRef:
        self._hit("create_order", payload.get("orderNumber"))
        self.orders.append(payload)
        return SupplierOrderRef.from_payload(self.order_ref)

    def get_tracking(self, order_number: str) -> TrackingInfo:
        self._hit("get_tracking", order_number)
        return TrackingInfo.from_payload(self.tracking.get(order_number, {}))

    def get_reviews(self, pid: str, page: int = 1, size: int = 20) -> ReviewPage:
        self._hit("get_reviews", pid)
        entries = self.reviews.get(pid, [])
        items = [r for r in (SupplierReview.from_payload(e) for e in entries) if r]
        return ReviewPage(items=items, total=len(items))


@pytest.fixture
def fake_supplier() -> FakeSupplierClient:
    return FakeSupplierClient()


def pytest_configure(config):
    """Register test markers."""
    config.addinivalue_line("markers", "unit: pure logic, no database")
    config.addinivalue_line("markers", "integration: runs against the in-memory database")
