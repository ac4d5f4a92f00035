"""Tests for the AliExpress affiliate client and catalogue storage."""

import hashlib
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from shopcrawl.affiliate.client import (
    API_ERROR,
    INVALID_RESPONSE,
    LINK_GENERATE_METHOD,
    PRODUCT_QUERY_METHOD,
    RATE_LIMITED,
    TRANSPORT_ERROR,
    AliExpressAffiliateClient,
    ApiResult,
    PromotionLink,
    SearchParams,
)
from shopcrawl.core.exceptions import ConfigurationError
from shopcrawl.services.affiliate_service import AffiliateService, affiliate_fields

PRODUCT_URL = "https://www.aliexpress.com/item/1005006123456789.html"
PROMOTION_LINK = "https://s.click.aliexpress.com/e/_DkABC12"


def link_response(source_value: str = PRODUCT_URL, link: str = PROMOTION_LINK) -> httpx.Response:
    return httpx.Response(200, json={
        "aliexpress_affiliate_link_generate_response": {
            "resp_result": {
                "resp_code": 200,
                "resp_msg": "Call succeeds",
                "result": {
                    "promotion_links": {
                        "promotion_link": [{"source_value": source_value, "promotion_link": link}],
                    },
                    "total_result_count": 1,
                },
            },
        },
    })


def scripted(*responses):
    """MockTransport handler replaying ``responses`` in order and recording requests."""
    queue = list(responses)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    return handler, requests


def make_client(handler, max_attempts: int = 5) -> AliExpressAffiliateClient:
    return AliExpressAffiliateClient(
        app_key="12345678",
        app_secret="s3cret",
        tracking_id="shopcrawl",
        api_url="https://api-sg.aliexpress.com/sync",
        max_attempts=max_attempts,
        backoff_seconds=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        clock=lambda: 1700000000.123,
    )


# ============================================================================
# CLIENT
# ============================================================================

class TestAffiliateClient:

    def test_sign_is_upper_md5_over_sorted_params(self):
        client = make_client(lambda request: link_response())
        params = {"b": "2", "a": "1", "sign": "ignored"}
        expected = hashlib.md5(b"s3creta1b2s3cret").hexdigest().upper()
        assert client.sign(params) == expected

    def test_build_params(self):
        client = make_client(lambda request: link_response())
        params = client.build_params(LINK_GENERATE_METHOD, {"source_values": PRODUCT_URL})

        assert params["method"] == LINK_GENERATE_METHOD
        assert params["timestamp"] == "1700000000123"
        assert params["sign_method"] == "md5"
        assert params["sign"] == client.sign({k: v for k, v in params.items() if k != "sign"})

    async def test_generate_link(self):
        handler, requests = scripted(link_response())
        result = await make_client(handler).generate_link(PRODUCT_URL)

        assert result.ok
        assert result.data == PromotionLink(source_value=PRODUCT_URL, promotion_link=PROMOTION_LINK)
        sent = dict(requests[0].url.params)
        assert sent["source_values"] == PRODUCT_URL
        assert sent["tracking_id"] == "shopcrawl"
        assert sent["promotion_link_type"] == "0"

    async def test_rate_limit_is_retried_until_success(self):
        handler, requests = scripted(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(429),
            link_response(),
        )
        result = await make_client(handler).generate_link(PRODUCT_URL)

        assert result.ok
        assert result.data.promotion_link == PROMOTION_LINK
        assert len(requests) == 4

    async def test_gateway_rate_limit_code_is_retried(self):
        handler, requests = scripted(
            httpx.Response(200, json={"error_response": {"code": "ApiCallLimit", "msg": "App call limited"}}),
            link_response(),
        )
        result = await make_client(handler).generate_link(PRODUCT_URL)

        assert result.ok
        assert len(requests) == 2

    async def test_rate_limit_exhausted(self):
        handler, requests = scripted(httpx.Response(429))
        result = await make_client(handler, max_attempts=3).generate_link(PRODUCT_URL)

        assert not result.ok
        assert result.error.kind == RATE_LIMITED
        assert len(requests) == 3

    async def test_partner_error_is_returned_verbatim_without_retry(self):
        handler, requests = scripted(httpx.Response(200, json={
            "error_response": {"code": "isv.invalid-parameter", "msg": "Invalid tracking_id: shopcrawl"},
        }))
        result = await make_client(handler).generate_link(PRODUCT_URL)

        assert not result.ok
        assert result.error.kind == API_ERROR
        assert result.error.message == "Invalid tracking_id: shopcrawl"
        assert result.error.code == "isv.invalid-parameter"
        assert len(requests) == 1

    async def test_business_error_code(self):
        handler, _ = scripted(httpx.Response(200, json={
            "aliexpress_affiliate_link_generate_response": {
                "resp_result": {"resp_code": 405, "resp_msg": "The result is empty"},
            },
        }))
        result = await make_client(handler).generate_link(PRODUCT_URL)

        assert result.error.kind == API_ERROR
        assert result.error.message == "The result is empty"
        assert result.error.code == "405"

    async def test_transport_error(self):
        handler, requests = scripted(httpx.ConnectError("connection refused"))
        result = await make_client(handler).generate_link(PRODUCT_URL)

        assert result.error.kind == TRANSPORT_ERROR
        assert "connection refused" in result.error.message
        assert len(requests) == 1

    async def test_non_json_body(self):
        handler, _ = scripted(httpx.Response(200, text="<html>maintenance</html>"))
        result = await make_client(handler).generate_link(PRODUCT_URL)

        assert result.error.kind == INVALID_RESPONSE

    @pytest.mark.parametrize("body", [
        {"aliexpress_affiliate_link_generate_response": "oops"},
        {"aliexpress_affiliate_link_generate_response": {"resp_result": {"resp_code": 200, "result": "oops"}}},
        {"aliexpress_affiliate_link_generate_response": {"resp_result": {
            "resp_code": 200, "result": {"promotion_links": "oops"},
        }}},
        {"aliexpress_affiliate_link_generate_response": {"resp_result": {
            "resp_code": 200, "result": {"promotion_links": {"promotion_link": ["oops"]}},
        }}},
        {"aliexpress_affiliate_link_generate_response": {"resp_result": {
            "resp_code": 200, "result": {"promotion_links": {"promotion_link": [{"promotion_link": 42}]}},
        }}},
    ])
    async def test_malformed_link_payload(self, body):
        handler, _ = scripted(httpx.Response(200, json=body))
        result = await make_client(handler).generate_link(PRODUCT_URL)

        assert not result.ok
        assert result.error.kind == INVALID_RESPONSE

    @pytest.mark.parametrize("result_body", [
        {"products": {"product": ["oops"]}},
        {"products": "oops"},
        {"total_record_count": "many", "products": {"product": []}},
    ])
    async def test_malformed_search_payload(self, result_body):
        handler, _ = scripted(httpx.Response(200, json={
            "aliexpress_affiliate_product_query_response": {
                "resp_result": {"resp_code": 200, "result": result_body},
            },
        }))
        result = await make_client(handler).search(SearchParams(keywords="earbuds"))

        assert not result.ok
        assert result.error.kind == INVALID_RESPONSE

    async def test_generate_links_keeps_input_order(self):
        other_url = "https://www.aliexpress.com/item/1005001111111111.html"
        handler, _ = scripted(
            link_response(),
            httpx.Response(500),
            link_response(other_url, "https://s.click.aliexpress.com/e/_Other"),
        )
        results = await make_client(handler).generate_links([PRODUCT_URL, "https://example.com/x", other_url])

        assert [r.ok for r in results] == [True, False, True]
        assert results[1].error.message == "HTTP 500"
        assert results[2].data.source_value == other_url

    async def test_search(self):
        handler, requests = scripted(httpx.Response(200, json={
            "aliexpress_affiliate_product_query_response": {
                "resp_result": {
                    "resp_code": 200,
                    "result": {
                        "current_page_no": 2,
                        "total_record_count": 312,
                        "products": {"product": [
                            {"product_id": 1005006123456789, "product_title": "TWS Earbuds"},
                        ]},
                    },
                },
            },
        }))
        result = await make_client(handler).search(
            SearchParams(keywords="earbuds", page_no=2, page_size=100, sort="LAST_VOLUME_DESC")
        )

        assert result.ok
        assert result.data.total_record_count == 312
        assert result.data.current_page_no == 2
        assert result.data.products[0]["product_title"] == "TWS Earbuds"
        sent = dict(requests[0].url.params)
        assert sent["method"] == PRODUCT_QUERY_METHOD
        assert sent["page_size"] == "50"
        assert sent["sort"] == "LAST_VOLUME_DESC"

    def test_from_settings_requires_credentials(self, settings):
        with pytest.raises(ConfigurationError) as exc_info:
            AliExpressAffiliateClient.from_settings(settings)
        assert "ALIEXPRESS_APP_KEY" in exc_info.value.message


# ============================================================================
# CATALOGUE STORAGE
# ============================================================================

PARTNER_PRODUCT = {
    "product_id": 1005006123456789,
    "product_title": "TWS Wireless Earbuds",
    "first_level_category_id": 44,
    "first_level_category_name": "Consumer Electronics",
    "target_sale_price": "12.34",
    "target_original_price": "24.68",
    "target_sale_price_currency": "USD",
    "discount": "50%",
    "product_main_image_url": "https://ae01.alicdn.com/kf/S8a1c2d3e4f5a6b7c8d9e0f.jpg",
    "product_small_image_urls": {"string": ["https://ae01.alicdn.com/kf/Sb1b2b3b4b5.jpg"]},
    "product_detail_url": PRODUCT_URL,
    "shop_id": 9001,
    "shop_name": "SoundTech Store",
    "commission_rate": "7.0%",
    "evaluate_rate": "96.5%",
    "lastest_volume": 5123,
}


class TestAffiliateService:

    def test_affiliate_fields(self):
        fields = affiliate_fields(PARTNER_PRODUCT)

        assert fields["first_level_category_id"] == "44"
        assert fields["target_sale_price"] == Decimal("12.34")
        assert fields["discount_rate"] == Decimal("50")
        assert fields["commission_rate"] == Decimal("7.0")
        assert fields["gallery_images"] == ["https://ae01.alicdn.com/kf/Sb1b2b3b4b5.jpg"]
        assert fields["sales_volume"] == 5123

    @pytest.mark.parametrize("volume,expected", [
        ("1,234", 1234),
        ("87", 87),
        (None, 0),
        ("", 0),
        ("10k+", 0),
        ("-5", 0),
    ])
    def test_sales_volume_formats(self, volume, expected):
        fields = affiliate_fields({**PARTNER_PRODUCT, "lastest_volume": volume})

        assert fields["sales_volume"] == expected

    async def test_save_search_results_upserts(self, test_db):
        service = AffiliateService(test_db)
        second = {**PARTNER_PRODUCT, "product_id": 1005001111111111, "product_title": "Phone Stand"}
        repriced = {**PARTNER_PRODUCT, "target_sale_price": "9.99"}

        created, updated = await service.save_search_results([PARTNER_PRODUCT, second, repriced, {"product_id": 1}])

        assert (created, updated) == (2, 1)
        stored = await service.get_product("1005006123456789")
        assert stored.target_sale_price == Decimal("9.99")

    async def test_link_is_created_once(self, test_db):
        service = AffiliateService(test_db)
        await service.save_search_results([PARTNER_PRODUCT])
        product = await service.get_product("1005006123456789")

        first = await service.create_link(product, PromotionLink(PRODUCT_URL, PROMOTION_LINK), "shopcrawl")
        second = await service.create_link(product, PromotionLink(PRODUCT_URL, "https://s.click.aliexpress.com/e/_New"))

        assert second.id == first.id
        assert second.promotion_link == PROMOTION_LINK
        assert first.long_url == PRODUCT_URL

    async def test_generate_and_store_link_reuses_stored_link(self, test_db):
        service = AffiliateService(test_db)
        await service.save_search_results([PARTNER_PRODUCT])
        client = MagicMock(tracking_id="shopcrawl")
        client.generate_link = AsyncMock(return_value=ApiResult.success(PromotionLink(PRODUCT_URL, PROMOTION_LINK)))

        first = await service.generate_and_store_link(client, "1005006123456789")
        second = await service.generate_and_store_link(client, "1005006123456789")

        assert first.ok and second.ok
        assert second.data.id == first.data.id
        client.generate_link.assert_awaited_once_with(PRODUCT_URL)

    async def test_generate_failure_stores_nothing(self, test_db):
        service = AffiliateService(test_db)
        await service.save_search_results([PARTNER_PRODUCT])
        client = MagicMock(tracking_id="shopcrawl")
        client.generate_link = AsyncMock(return_value=ApiResult.failure(API_ERROR, "The result is empty", "405"))

        result = await service.generate_and_store_link(client, "1005006123456789")

        assert not result.ok
        assert result.error.message == "The result is empty"
        assert await service.get_link(await service.get_product("1005006123456789")) is None

    async def test_unknown_product_raises(self, test_db):
        with pytest.raises(ValueError):
            await AffiliateService(test_db).generate_and_store_link(MagicMock(), "404")
