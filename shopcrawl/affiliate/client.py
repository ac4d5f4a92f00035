"""AliExpress Affiliate API client.

Documentation: https://developers.aliexpress.com/en/doc.htm?docId=108976&docType=1

Every public call returns an ApiResult envelope instead of raising. Rate-limit
signals from the partner are retried with exponential backoff; other partner
errors are returned immediately with the partner's message.
"""

import hashlib
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shopcrawl.scrapers.utils.retry import log_before_sleep

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PRODUCT_QUERY_METHOD = "aliexpress.affiliate.product.query"
LINK_GENERATE_METHOD = "aliexpress.affiliate.link.generate"

SORT_OPTIONS = ("SALE_PRICE_ASC", "SALE_PRICE_DESC", "LAST_VOLUME_DESC")

# Partner error codes that mean "slow down"
RATE_LIMIT_CODES = frozenset({"ApiCallLimit", "AppCallLimit", "FrequencyLimit"})

# promotion_link_type 0 is a normal (non hot-product) link
NORMAL_PROMOTION_LINK = "0"

# Error kinds
RATE_LIMITED = "rate_limited"
API_ERROR = "api_error"
TRANSPORT_ERROR = "transport_error"
INVALID_RESPONSE = "invalid_response"


@dataclass(frozen=True)
class ApiError:
    kind: str
    message: str
    code: Optional[str] = None


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    ok: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None

    @classmethod
    def success(cls, data: T) -> "ApiResult[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: str, message: str, code: Optional[str] = None) -> "ApiResult[T]":
        return cls(ok=False, error=ApiError(kind=kind, message=message, code=code))


@dataclass
class SearchParams:
    keywords: str = ""
    category_ids: str = ""
    page_no: int = 1
    page_size: int = 20
    sort: Optional[str] = None
    target_currency: str = "USD"
    target_language: str = "EN"

    def to_api_params(self) -> Dict[str, str]:
        params = {
            "target_currency": self.target_currency,
            "target_language": self.target_language,
            "page_no": str(self.page_no),
            "page_size": str(min(self.page_size, 50)),  # API max is 50
        }
        if self.keywords:
            params["keywords"] = self.keywords
        if self.category_ids:
            params["category_ids"] = self.category_ids
        if self.sort:
            params["sort"] = self.sort
        return params


@dataclass
class ProductSearchResult:
    products: List[Dict[str, Any]] = field(default_factory=list)
    total_record_count: int = 0
    current_page_no: int = 1


@dataclass(frozen=True)
class PromotionLink:
    source_value: str
    promotion_link: str


class RateLimitSignal(Exception):
    """The partner asked us to back off; retried by AsyncRetrying."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(message)


class PartnerError(Exception):
    """A non-retryable failure, carrying the ApiError to return."""

    def __init__(self, error: ApiError):
        self.error = error
        super().__init__(error.message)


class AliExpressAffiliateClient:
    """Signed calls against the AliExpress affiliate "sync" endpoint."""

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        tracking_id: str,
        api_url: str = "https://api-sg.aliexpress.com/sync",
        max_attempts: int = 5,
        backoff_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.app_key = app_key
        self.app_secret = app_secret
        self.tracking_id = tracking_id
        self.api_url = api_url
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._http_client = http_client
        self._clock = clock
        self._timeout = 30.0
        self.logger = logger.bind(service="aliexpress_affiliate")

    @classmethod
    def from_settings(cls, settings, http_client: Optional[httpx.AsyncClient] = None) -> "AliExpressAffiliateClient":
        """Build a client from settings.

        Raises:
            ConfigurationError: if the partner credentials are not configured
        """
        settings.require_affiliate_credentials()
        return cls(
            app_key=settings.ALIEXPRESS_APP_KEY,
            app_secret=settings.ALIEXPRESS_APP_SECRET,
            tracking_id=settings.ALIEXPRESS_TRACKING_ID,
            api_url=settings.ALIEXPRESS_API_URL,
            max_attempts=settings.AFFILIATE_MAX_ATTEMPTS,
            backoff_seconds=settings.AFFILIATE_BACKOFF_SECONDS,
            http_client=http_client,
        )

    async def search(self, params: SearchParams) -> ApiResult[ProductSearchResult]:
        """Query the affiliate product catalogue."""
        api_params = params.to_api_params()
        api_params["tracking_id"] = self.tracking_id
        result = await self._call(PRODUCT_QUERY_METHOD, api_params)
        if not result.ok:
            return result

        payload = result.data
        container = payload.get("products") or {}
        products = (container.get("product") or []) if isinstance(container, dict) else None
        if not isinstance(products, list) or not all(isinstance(item, dict) for item in products):
            return ApiResult.failure(INVALID_RESPONSE, "products.product is not a list of objects")
        try:
            total_record_count = int(payload.get("total_record_count") or 0)
            current_page_no = int(payload.get("current_page_no") or params.page_no)
        except (TypeError, ValueError):
            return ApiResult.failure(INVALID_RESPONSE, "Paging fields are not numbers")

        self.logger.debug("affiliate_search_success", keywords=params.keywords, returned_items=len(products))
        return ApiResult.success(ProductSearchResult(
            products=products,
            total_record_count=total_record_count,
            current_page_no=current_page_no,
        ))

    async def generate_link(self, url: str) -> ApiResult[PromotionLink]:
        """Generate a tracking link for a product URL."""
        result = await self._call(LINK_GENERATE_METHOD, {
            "promotion_link_type": NORMAL_PROMOTION_LINK,
            "source_values": url,
            "tracking_id": self.tracking_id,
        })
        if not result.ok:
            return result

        links = _as_dict(result.data.get("promotion_links")).get("promotion_link") or []
        first = links[0] if isinstance(links, list) and links else None
        link = first.get("promotion_link") if isinstance(first, dict) else None
        if not link or not isinstance(link, str):
            return ApiResult.failure(INVALID_RESPONSE, "No promotion link generated")

        return ApiResult.success(PromotionLink(
            source_value=str(first.get("source_value") or url),
            promotion_link=link,
        ))

    async def generate_links(self, urls: List[str]) -> List[ApiResult[PromotionLink]]:
        """Generate links one URL at a time; results are in input order."""
        results = []
        for url in urls:
            results.append(await self.generate_link(url))
        self.logger.info(
            "affiliate_bulk_links_generated",
            requested=len(urls),
            succeeded=sum(1 for r in results if r.ok),
        )
        return results

    def sign(self, params: Dict[str, str]) -> str:
        """MD5 over secret + sorted key/value pairs + secret, upper-case hex."""
        sign_string = self.app_secret
        for key, value in sorted(params.items()):
            if key != "sign":
                sign_string += f"{key}{value}"
        sign_string += self.app_secret
        return hashlib.md5(sign_string.encode("utf-8")).hexdigest().upper()

    def build_params(self, method: str, api_params: Dict[str, str]) -> Dict[str, str]:
        params = {
            "app_key": self.app_key,
            "method": method,
            "timestamp": str(int(self._clock() * 1000)),
            "sign_method": "md5",
            "format": "json",
            "v": "2.0",
        }
        params.update({key: str(value) for key, value in api_params.items()})
        params["sign"] = self.sign(params)
        return params

    async def _call(self, method: str, api_params: Dict[str, str]) -> ApiResult[Dict[str, Any]]:
        """Call ``method`` and return its ``resp_result.result`` payload."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=60),
            retry=retry_if_exception_type(RateLimitSignal),
            before_sleep=log_before_sleep("affiliate_rate_limited"),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    payload = await self._request(method, api_params)
        except RateLimitSignal as e:
            self.logger.warning("affiliate_rate_limit_exhausted", method=method, attempts=self.max_attempts)
            return ApiResult.failure(RATE_LIMITED, e.message, e.code)
        except PartnerError as e:
            self.logger.error(
                "affiliate_api_error",
                method=method,
                kind=e.error.kind,
                code=e.error.code,
                error=e.error.message,
            )
            return ApiResult(ok=False, error=e.error)
        return ApiResult.success(payload)

    async def _request(self, method: str, api_params: Dict[str, str]) -> Dict[str, Any]:
        params = self.build_params(method, api_params)
        try:
            response = await self._get(params)
        except httpx.HTTPError as e:
            raise PartnerError(ApiError(TRANSPORT_ERROR, str(e) or type(e).__name__))

        if response.status_code == 429:
            raise RateLimitSignal("Rate limit exceeded", "429")
        if response.status_code >= 400:
            raise PartnerError(ApiError(API_ERROR, f"HTTP {response.status_code}", str(response.status_code)))

        try:
            data = response.json()
        except ValueError:
            raise PartnerError(ApiError(INVALID_RESPONSE, "Response body is not JSON"))
        if not isinstance(data, dict):
            raise PartnerError(ApiError(INVALID_RESPONSE, "Response body is not an object"))

        # Gateway-level errors: {"error_response": {"code": ..., "msg": ...}}
        error_response = data.get("error_response")
        if isinstance(error_response, dict):
            code = str(error_response.get("code") or "")
            sub_code = str(error_response.get("sub_code") or "")
            message = error_response.get("msg") or error_response.get("sub_msg") or "Unknown error"
            if code in RATE_LIMIT_CODES or sub_code in RATE_LIMIT_CODES:
                raise RateLimitSignal(message, code or sub_code)
            raise PartnerError(ApiError(API_ERROR, message, code or sub_code or None))

        response_key = method.replace(".", "_") + "_response"
        resp_result = _as_dict(data.get(response_key)).get("resp_result")
        if not isinstance(resp_result, dict):
            raise PartnerError(ApiError(INVALID_RESPONSE, f"Missing {response_key}.resp_result"))

        resp_code = resp_result.get("resp_code")
        if resp_code != 200:
            message = resp_result.get("resp_msg") or "Unknown error"
            raise PartnerError(ApiError(API_ERROR, message, str(resp_code)))

        result = resp_result.get("result") or {}
        if not isinstance(result, dict):
            raise PartnerError(ApiError(INVALID_RESPONSE, f"{response_key}.resp_result.result is not an object"))
        return result

    async def _get(self, params: Dict[str, str]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.get(self.api_url, params=params)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.get(self.api_url, params=params)


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}
