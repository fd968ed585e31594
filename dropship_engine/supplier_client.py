from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

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
from dropship_engine.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class SupplierError(Exception):
    """Base class for every failure surfaced by the supplier client."""


class SupplierTransientError(SupplierError):
    """Worth retrying later: the request never got a business answer."""


class SupplierNetworkError(SupplierTransientError):
    pass


class SupplierRateLimitError(SupplierTransientError):
    pass


class SupplierBusinessError(SupplierError):
    """The supplier answered and rejected the request (e.g. product not found)."""

    def __init__(self, code: Any, message: str):
        super().__init__(f"supplier error {code}: {message}")
        self.code = code
        self.message = message


class SupplierAuthError(SupplierError):
    """Missing credentials or a refused/throttled authentication. Fatal for a whole pass."""


SUCCESS_CODES = (200, 0)


class SupplierClient:
    """
    Blocking client for the supplier platform.

    - One access token, refreshed `supplier_token_refresh_margin` seconds before expiry
    - Authentication attempts limited to one per `supplier_auth_min_interval` seconds
    - At least `supplier_min_request_interval` seconds between outbound requests
    - Rate-limit responses and transport errors are retried once after a fixed backoff
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or default_settings
        self._base_url = self._settings.supplier_api_base_url.rstrip("/")
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

        self._access_token: str | None = None
        self._token_expires_at: datetime | None = None
        self._last_auth_attempt: float | None = None
        self._last_request_at: float | None = None
        self._lock = threading.RLock()

        self.api_calls = 0

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    def _http(self) -> httpx.Client:
        timeout = httpx.Timeout(self._settings.supplier_timeout, connect=self._settings.supplier_connect_timeout)
        return httpx.Client(timeout=timeout, transport=self._transport)

    def _wait_for_slot(self) -> None:
        interval = self._settings.supplier_min_request_interval
        if self._last_request_at is not None and interval > 0:
            elapsed = self._clock() - self._last_request_at
            if elapsed < interval:
                self._sleep(interval - elapsed)
        self._last_request_at = self._clock()

    def _send(self, method: str, path: str, params: dict[str, Any] | None, payload: Any, token: str | None) -> Any:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if token:
            headers["CJ-Access-Token"] = token

        url = f"{self._base_url}{path}"
        with self._lock:
            self._wait_for_slot()
            self.api_calls += 1
            try:
                with self._http() as client:
                    resp = client.request(method, url, params=params, json=payload, headers=headers)
            except httpx.TimeoutException as e:
                raise SupplierNetworkError(f"timeout calling {path}: {e}") from e
            except httpx.TransportError as e:
                raise SupplierNetworkError(f"connection error calling {path}: {e}") from e

        if resp.status_code == 429:
            raise SupplierRateLimitError(f"rate limited on {path} (HTTP 429)")
        if resp.status_code in (401, 403):
            self._access_token = None
            raise SupplierAuthError(f"supplier refused credentials on {path} (HTTP {resp.status_code})")
        if resp.status_code >= 500:
            raise SupplierTransientError(f"supplier unavailable on {path} (HTTP {resp.status_code})")

        try:
            body = resp.json()
        except ValueError as e:
            raise SupplierTransientError(f"unreadable response from {path}: {resp.text[:200]}") from e
        if not isinstance(body, dict):
            raise SupplierTransientError(f"unexpected response shape from {path}")

        code = body.get("code")
        if code in self._settings.supplier_rate_limit_codes:
            raise SupplierRateLimitError(f"rate limited on {path}: {body.get('message')}")
        if resp.status_code >= 400 or code not in SUCCESS_CODES:
            raise SupplierBusinessError(code if code is not None else resp.status_code, str(body.get("message") or ""))
        return body.get("data")

    # ------------------------------------------------------------------
    # auth
    # ------------------------------------------------------------------

    def _token_is_fresh(self) -> bool:
        if not self._access_token or self._token_expires_at is None:
            return False
        margin = timedelta(seconds=self._settings.supplier_token_refresh_margin)
        return self._token_expires_at > datetime.now(timezone.utc) + margin

    def authenticate(self) -> str:
        """Return a valid access token, requesting a new one when the cached one is close to expiry."""
        with self._lock:
            if self._token_is_fresh():
                return self._access_token  # type: ignore[return-value]

            if not self._settings.supplier_api_key:
                raise SupplierAuthError("SUPPLIER_API_KEY is not configured")

            now = self._clock()
            min_interval = self._settings.supplier_auth_min_interval
            if self._last_auth_attempt is not None and now - self._last_auth_attempt < min_interval:
                raise SupplierAuthError(
                    f"authentication throttled: one request per {min_interval:.0f}s allowed"
                )
            self._last_auth_attempt = now

            logger.info("[SUPPLIER] Requesting access token")
            try:
                data = self._send(
                    "POST",
                    "/authentication/getAccessToken",
                    None,
                    {"apiKey": self._settings.supplier_api_key},
                    token=None,
                )
            except SupplierBusinessError as e:
                raise SupplierAuthError(f"authentication rejected: {e.message}") from e

            token = (data or {}).get("accessToken") if isinstance(data, dict) else None
            if not token:
                raise SupplierAuthError("authentication response carried no access token")

            self._access_token = str(token)
            self._token_expires_at = self._parse_expiry((data or {}).get("accessTokenExpiryDate"))
            logger.info(f"[SUPPLIER] Access token received, expires at {self._token_expires_at.isoformat()}")
            return self._access_token

    @staticmethod
    def _parse_expiry(value: Any) -> datetime:
        if isinstance(value, str) and value:
            try:
                expires = datetime.fromisoformat(value.replace("Z", "+00:00"))
                if expires.tzinfo is None:
                    expires = expires.replace(tzinfo=timezone.utc)
                return expires
            except ValueError:
                logger.warning(f"[SUPPLIER] Unparseable token expiry {value!r}; assuming 1 day")
        return datetime.now(timezone.utc) + timedelta(days=1)

    def _call(self, method: str, path: str, params: dict[str, Any] | None = None, payload: Any = None) -> Any:
        token = self.authenticate()
        retrying = Retrying(
            stop=stop_after_attempt(2),
            wait=wait_fixed(self._settings.supplier_rate_limit_backoff),
            retry=retry_if_exception_type(SupplierTransientError),
            sleep=self._sleep,
            before_sleep=lambda state: logger.warning(
                f"[SUPPLIER] {path} failed ({state.outcome.exception()}); retrying once"
            ),
            reraise=True,
        )
        return retrying(self._send, method, path, params, payload, token)

    # ------------------------------------------------------------------
    # endpoints
    # ------------------------------------------------------------------

    def list_products(
        self,
        page: int = 1,
        size: int = 200,
        category_id: str | None = None,
        country_code: str | None = None,
    ) -> ProductPage:
        params: dict[str, Any] = {"pageNum": page, "pageSize": size}
        if category_id:
            params["categoryId"] = category_id
        if country_code:
            params["countryCode"] = country_code

        data = self._call("GET", "/product/list", params=params) or {}
        entries = data.get("list") or []
        items = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                items.append(SupplierProduct.from_payload(entry))
            except ValueError:
                logger.warning("[SUPPLIER] Dropping list entry without pid")
        return ProductPage(
            items=items,
            page=int(data.get("pageNum") or page),
            size=int(data.get("pageSize") or size),
            total=int(data.get("total") or 0),
            raw_count=len(entries),
        )

    def get_product(self, pid: str) -> SupplierProduct:
        data = self._call("GET", "/product/query", params={"pid": pid})
        if not isinstance(data, dict) or not data:
            raise SupplierBusinessError("not_found", f"product {pid} not found")
        data.setdefault("pid", pid)
        return SupplierProduct.from_payload(data)

    def get_stock(self, pid: str) -> list[WarehouseStock]:
        data = self._call("GET", "/product/stock/getInventoryByPid", params={"pid": pid})
        return WarehouseStock.list_from_payload(data)

    def freight_quote(
        self,
        items: list[dict[str, Any]],
        destination_country: str = "US",
        origin_country: str | None = None,
    ) -> list[FreightOption]:
        """Quote freight for [{"vid": ..., "quantity": ...}] line items."""
        if not items:
            return []
        payload: dict[str, Any] = {
            "endCountryCode": destination_country,
            "products": [{"vid": i["vid"], "quantity": int(i.get("quantity") or 1)} for i in items],
        }
        if origin_country:
            payload["startCountryCode"] = origin_country
        data = self._call("POST", "/logistic/freightCalculate", payload=payload)
        return FreightOption.list_from_payload(data)

    def create_order(self, payload: dict[str, Any]) -> SupplierOrderRef:
        body = {**payload, "payType": payload.get("payType") or self._settings.fulfillment_pay_type}
        logger.info(f"[SUPPLIER] Creating order {body.get('orderNumber')} ({len(body.get('products') or [])} lines)")
        data = self._call("POST", "/shopping/order/createOrderV2", payload=body)
        ref = SupplierOrderRef.from_payload(data if isinstance(data, dict) else {})
        if not ref.order_id and not ref.order_number:
            raise SupplierBusinessError("no_reference", "order accepted without an order id or number")
        return ref

    def get_tracking(self, order_number: str) -> TrackingInfo:
        data = self._call("GET", "/logistic/trackingInfo", params={"orderNumber": order_number})
        return TrackingInfo.from_payload(data)

    def get_reviews(self, pid: str, page: int = 1, size: int = 20) -> ReviewPage:
        data = self._call(
            "GET", "/product/productComments", params={"pid": pid, "pageNum": page, "pageSize": size}
        )
        entries: list[Any] = []
        total = 0
        if isinstance(data, dict):
            entries = data.get("list") or []
            total = int(data.get("total") or 0)
        elif isinstance(data, list):
            entries = data
        reviews = [r for r in (SupplierReview.from_payload(e) for e in entries if isinstance(e, dict)) if r]
        return ReviewPage(items=reviews, total=total or len(reviews))


@lru_cache(maxsize=1)
def get_supplier_client() -> SupplierClient:
    # shared so the token and throttling state survive across requests
    return SupplierClient()
