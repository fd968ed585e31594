import json

import httpx
import pytest
from freezegun import freeze_time

from dropship_engine.settings import Settings
from dropship_engine.supplier_client import (
    SupplierAuthError,
    SupplierBusinessError,
    SupplierClient,
    SupplierNetworkError,
    SupplierRateLimitError,
    SupplierTransientError,
)

BASE = "https://supplier.test/api2.0/v1"


def ok(data):
    return httpx.Response(200, json={"code": 200, "result": True, "message": "Success", "data": data})


def auth_response(token="tok-1", expiry="2099-01-01T00:00:00+08:00"):
    return ok({"accessToken": token, "accessTokenExpiryDate": expiry})


class FakeClock:
    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class Recorder:
    """Routes requests by path; each route is a response or a list consumed in order."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.replace("/api2.0/v1", "")
        route = self.routes[path]
        response = route.pop(0) if isinstance(route, list) else route
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, path):
        return sum(1 for r in self.requests if r.url.path.endswith(path))


def make_client(routes, clock=None, **overrides):
    values = {
        "supplier_api_key": "test-key",
        "supplier_api_base_url": BASE,
        "supplier_min_request_interval": 0,
        "supplier_rate_limit_backoff": 3.0,
    }
    values.update(overrides)
    recorder = Recorder(routes)
    clock = clock or FakeClock()
    client = SupplierClient(
        settings=Settings(**values),
        transport=httpx.MockTransport(recorder),
        sleep=clock.sleep,
        clock=clock,
    )
    return client, recorder, clock


@pytest.mark.unit
class TestAuthentication:
    def test_token_is_cached_and_sent(self):
        client, recorder, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/stock/getInventoryByPid": ok({"inventories": []}),
            }
        )
        client.get_stock("P1")
        client.get_stock("P1")

        assert recorder.count("/getAccessToken") == 1
        assert json.loads(recorder.requests[0].content) == {"apiKey": "test-key"}
        stock_request = recorder.requests[1]
        assert stock_request.headers["CJ-Access-Token"] == "tok-1"
        assert stock_request.url.params["pid"] == "P1"
        assert client.api_calls == 3

    def test_missing_key_fails_without_calling_out(self):
        client, recorder, _ = make_client({}, supplier_api_key="")
        with pytest.raises(SupplierAuthError):
            client.authenticate()
        assert recorder.requests == []

    def test_rejected_credentials_are_throttled(self):
        client, recorder, clock = make_client(
            {
                "/authentication/getAccessToken": [
                    httpx.Response(200, json={"code": 1600001, "message": "Invalid API key"}),
                    auth_response(),
                ]
            }
        )
        with pytest.raises(SupplierAuthError, match="Invalid API key"):
            client.authenticate()
        with pytest.raises(SupplierAuthError, match="throttled"):
            client.authenticate()
        assert recorder.count("/getAccessToken") == 1

        clock.now += 301
        assert client.authenticate() == "tok-1"

    def test_refreshes_two_minutes_before_expiry(self):
        client, recorder, clock = make_client(
            {
                "/authentication/getAccessToken": [
                    auth_response("tok-1", "2026-01-01T00:10:00Z"),
                    auth_response("tok-2", "2026-01-02T00:10:00Z"),
                ]
            }
        )
        with freeze_time("2026-01-01T00:00:00Z") as frozen:
            assert client.authenticate() == "tok-1"

            frozen.move_to("2026-01-01T00:07:00Z")
            assert client.authenticate() == "tok-1"

            frozen.move_to("2026-01-01T00:08:30Z")
            clock.now += 600
            assert client.authenticate() == "tok-2"
        assert recorder.count("/getAccessToken") == 2

    def test_401_drops_the_cached_token(self):
        client, recorder, clock = make_client(
            {
                "/authentication/getAccessToken": [auth_response("tok-1"), auth_response("tok-2")],
                "/product/query": [httpx.Response(401), ok({"pid": "P1", "productNameEn": "Tee"})],
            }
        )
        with pytest.raises(SupplierAuthError):
            client.get_product("P1")

        clock.now += 301
        assert client.get_product("P1").name == "Tee"
        assert recorder.requests[-1].headers["CJ-Access-Token"] == "tok-2"


@pytest.mark.unit
class TestRequestPolicy:
    def test_requests_are_spaced(self):
        client, _, clock = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/stock/getInventoryByPid": ok([]),
            },
            supplier_min_request_interval=3.0,
        )
        client.get_stock("P1")
        client.get_stock("P2")

        assert clock.sleeps == [3.0, 3.0]

    def test_rate_limit_code_is_retried_once(self):
        client, recorder, clock = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/stock/getInventoryByPid": [
                    httpx.Response(200, json={"code": 1600200, "message": "Too much request"}),
                    ok([{"countryCode": "US", "totalInventoryNum": 4}]),
                ],
            }
        )
        stocks = client.get_stock("P1")

        assert stocks[0].quantity == 4
        assert recorder.count("/getInventoryByPid") == 2
        assert clock.sleeps == [3.0]

    def test_second_rate_limit_is_surfaced(self):
        client, recorder, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/stock/getInventoryByPid": [httpx.Response(429), httpx.Response(429)],
            }
        )
        with pytest.raises(SupplierRateLimitError):
            client.get_stock("P1")
        assert recorder.count("/getInventoryByPid") == 2

    def test_network_errors_are_transient(self):
        client, recorder, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/stock/getInventoryByPid": [
                    httpx.ConnectError("refused"),
                    httpx.ReadTimeout("slow"),
                ],
            }
        )
        with pytest.raises(SupplierNetworkError):
            client.get_stock("P1")
        assert recorder.count("/getInventoryByPid") == 2

    def test_server_errors_are_transient(self):
        client, _, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/stock/getInventoryByPid": [httpx.Response(502), httpx.Response(503)],
            }
        )
        with pytest.raises(SupplierTransientError):
            client.get_stock("P1")

    def test_business_errors_are_not_retried(self):
        client, recorder, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/query": httpx.Response(200, json={"code": 1600100, "message": "product not exist"}),
            }
        )
        with pytest.raises(SupplierBusinessError) as excinfo:
            client.get_product("P404")
        assert excinfo.value.code == 1600100
        assert recorder.count("/product/query") == 1

    def test_empty_product_detail_is_not_found(self):
        client, _, _ = make_client(
            {"/authentication/getAccessToken": auth_response(), "/product/query": ok(None)}
        )
        with pytest.raises(SupplierBusinessError) as excinfo:
            client.get_product("P1")
        assert excinfo.value.code == "not_found"


@pytest.mark.unit
class TestEndpoints:
    def test_list_products(self):
        client, recorder, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/list": ok(
                    {
                        "pageNum": 2,
                        "pageSize": 2,
                        "total": 3,
                        "list": [{"pid": "P3", "productNameEn": "Mug", "sellPrice": "2.10--3.40"}, {"name": "no pid"}],
                    }
                ),
            }
        )
        page = client.list_products(page=2, size=2, category_id="CAT-1", country_code="US")

        assert [p.pid for p in page.items] == ["P3"]
        assert page.raw_count == 2
        assert page.items[0].sell_price == 3.40
        assert page.total == 3
        params = recorder.requests[-1].url.params
        assert params["pageNum"] == "2"
        assert params["categoryId"] == "CAT-1"
        assert params["countryCode"] == "US"

    def test_freight_quote_payload(self):
        client, recorder, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/logistic/freightCalculate": ok(
                    [
                        {"logisticName": "USPS+", "logisticPrice": 5.12, "logisticAging": "6-9"},
                        {"logisticName": "Broken"},
                    ]
                ),
            }
        )
        options = client.freight_quote([{"vid": "V1", "quantity": 2}], destination_country="US", origin_country="CN")

        assert [(o.carrier, o.price) for o in options] == [("USPS+", 5.12)]
        assert json.loads(recorder.requests[-1].content) == {
            "endCountryCode": "US",
            "products": [{"vid": "V1", "quantity": 2}],
            "startCountryCode": "CN",
        }

    def test_freight_quote_without_items_skips_the_call(self):
        client, recorder, _ = make_client({})
        assert client.freight_quote([]) == []
        assert recorder.requests == []

    def test_create_order_adds_pay_type(self):
        client, recorder, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/shopping/order/createOrderV2": ok({"orderId": "CJ-9", "orderNumber": "ORD-9"}),
            }
        )
        ref = client.create_order({"orderNumber": "ORD-9", "products": []})

        assert (ref.order_id, ref.order_number) == ("CJ-9", "ORD-9")
        assert json.loads(recorder.requests[-1].content)["payType"] == 2

    def test_create_order_without_reference_fails(self):
        client, _, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/shopping/order/createOrderV2": ok({}),
            }
        )
        with pytest.raises(SupplierBusinessError):
            client.create_order({"orderNumber": "ORD-9", "products": []})

    def test_tracking(self):
        client, _, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/logistic/trackingInfo": ok(
                    [{"trackingNumber": "9400111", "logisticName": "USPS", "trackingStatus": "In transit"}]
                ),
            }
        )
        info = client.get_tracking("ORD-9")
        assert (info.tracking_number, info.carrier, info.status) == ("9400111", "USPS", "In transit")

    def test_reviews_accept_a_bare_list(self):
        client, _, _ = make_client(
            {
                "/authentication/getAccessToken": auth_response(),
                "/product/productComments": ok(
                    [{"commentId": "C1", "score": "5", "comment": "Great"}, {"comment": "no id"}]
                ),
            }
        )
        page = client.get_reviews("P1")
        assert [r.comment_id for r in page.items] == ["C1"]
        assert page.items[0].score == 5
        assert page.total == 1
