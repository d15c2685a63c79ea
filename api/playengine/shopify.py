"""Shopify Admin GraphQL client for creating discount codes."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx

from .config import settings
from .errors import ExternalIntegrationError

logger = logging.getLogger(__name__)


@dataclass
class DiscountSpec:
    title: str
    code: str
    kind: str  # PERCENTAGE | FIXED_AMOUNT | FREE_SHIPPING
    value: float
    starts_at: datetime
    ends_at: datetime
    usage_limit: int
    applies_once_per_customer: bool = True
    min_subtotal: Optional[float] = None
    combine_with_product: bool = False
    combine_with_order: bool = False
    combine_with_shipping: bool = True


class DiscountGateway(Protocol):
    def create_code(self, spec: DiscountSpec) -> str:
        """Create the code on the platform and return its id, or raise ExternalIntegrationError."""
        ...


BASIC_CREATE = """
mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {
  discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {
    codeDiscountNode { id }
    userErrors { field message code }
  }
}
"""

FREE_SHIPPING_CREATE = """
mutation discountCodeFreeShippingCreate($freeShippingCodeDiscount: DiscountCodeFreeShippingInput!) {
  discountCodeFreeShippingCreate(freeShippingCodeDiscount: $freeShippingCodeDiscount) {
    codeDiscountNode { id }
    userErrors { field message code }
  }
}
"""


class ShopifyClient:
    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version or settings.shopify_api_version
        self.timeout = timeout if timeout is not None else settings.shopify_timeout_seconds
        self.transport = transport
        self.endpoint = f"https://{shop_domain}/admin/api/{self.api_version}/graphql.json"

    def query(self, query: str, variables: dict[str, Any]) -> dict:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    self.endpoint,
                    json={"query": query, "variables": variables},
                    headers={"X-Shopify-Access-Token": self.access_token},
                )
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            logger.error("Shopify request to %s timed out: %s", self.shop_domain, e)
            raise ExternalIntegrationError("Discount provider timed out")
        except httpx.HTTPStatusError as e:
            logger.error("Shopify API error for %s: %s", self.shop_domain, e.response.status_code)
            raise ExternalIntegrationError("Discount provider rejected the request")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Shopify request to %s failed: %s", self.shop_domain, e)
            raise ExternalIntegrationError("Discount provider unavailable")

    def create_code(self, spec: DiscountSpec) -> str:
        if spec.kind == "FREE_SHIPPING":
            mutation, root = FREE_SHIPPING_CREATE, "discountCodeFreeShippingCreate"
            variables = {"freeShippingCodeDiscount": self._free_shipping_input(spec)}
        else:
            mutation, root = BASIC_CREATE, "discountCodeBasicCreate"
            variables = {"basicCodeDiscount": self._basic_input(spec)}

        body = self.query(mutation, variables)
        if body.get("errors"):
            logger.error("Shopify GraphQL errors for %s: %s", spec.code, body["errors"])
            raise ExternalIntegrationError("Discount provider rejected the request")

        payload = (body.get("data") or {}).get(root) or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            logger.warning("Shopify userErrors for %s: %s", spec.code, user_errors)
            raise ExternalIntegrationError("Discount provider rejected the code")

        node = payload.get("codeDiscountNode") or {}
        if not node.get("id"):
            logger.error("Shopify returned no discount id for %s", spec.code)
            raise ExternalIntegrationError("Discount provider returned no id")
        return node["id"]

    @staticmethod
    def _common(spec: DiscountSpec) -> dict:
        return {
            "title": spec.title,
            "code": spec.code,
            "startsAt": spec.starts_at.isoformat(),
            "endsAt": spec.ends_at.isoformat(),
            "usageLimit": spec.usage_limit,
            "appliesOncePerCustomer": spec.applies_once_per_customer,
            "customerSelection": {"all": True},
        }

    def _free_shipping_input(self, spec: DiscountSpec) -> dict:
        data = self._common(spec)
        data["destination"] = {"all": True}
        data["combinesWith"] = {
            "productDiscounts": spec.combine_with_product,
            "orderDiscounts": spec.combine_with_order,
        }
        if spec.min_subtotal:
            data["minimumRequirement"] = {
                "subtotal": {"greaterThanOrEqualToSubtotal": spec.min_subtotal}
            }
        return data

    def _basic_input(self, spec: DiscountSpec) -> dict:
        data = self._common(spec)
        if spec.kind == "PERCENTAGE":
            value = {"percentage": spec.value / 100}
        else:
            value = {"discountAmount": {"amount": spec.value, "appliesOnEachItem": False}}
        data["customerGets"] = {"value": value, "items": {"all": True}}
        data["combinesWith"] = {
            "productDiscounts": spec.combine_with_product,
            "orderDiscounts": spec.combine_with_order,
            "shippingDiscounts": spec.combine_with_shipping,
        }
        if spec.min_subtotal:
            data["minimumRequirement"] = {
                "subtotal": {"greaterThanOrEqualToSubtotal": spec.min_subtotal}
            }
        return data


def gateway_for_shop(shop) -> DiscountGateway:
    if not shop.access_token:
        raise ExternalIntegrationError("Shop has no discount provider credentials")
    return ShopifyClient(shop.domain, shop.access_token)
