import json
import logging
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from conftest import WIN_ONLY

from playengine import engine
from playengine.db import SessionLocal
from playengine.errors import ExternalIntegrationError
from playengine.models import Analytics, Discount, Play, Visitor
from playengine.shopify import DiscountSpec, ShopifyClient
from playengine.utils import as_utc, utcnow


def _win(client, shop_headers, game_id, fingerprint="fp-win"):
    token = client.post("/api/proxy/init", json={"fingerprint": fingerprint}, headers=shop_headers).json()["sessionToken"]
    return client.post("/api/proxy/play", json={"sessionToken": token, "gameId": game_id})


def test_code_verifies_until_expiry(client, store, shop_headers):
    shop = store.shop()
    game = store.game(shop, WIN_ONLY)
    store.rule(shop, game, validity_days=3)
    code = _win(client, shop_headers, game.id).json()["discount"]["code"]

    with SessionLocal() as db:
        expires_at = as_utc(db.query(Discount).one().expires_at)
        assert engine.verify(db, code, shop.domain, now=expires_at).valid
        assert engine.verify(db, code.lower(), now=expires_at - timedelta(days=2)).valid
        late = engine.verify(db, code, shop.domain, now=expires_at + timedelta(seconds=1))
        assert not late.valid and late.reason == "expired"
        assert engine.verify(db, code, "other-shop.myshopify.com").reason == "not_found"

    r = client.post("/api/discounts/verify", json={"code": code, "shop": shop.domain})
    assert r.json()["valid"] is True
    assert "reason" not in r.json()
    assert client.post("/api/discounts/verify", json={"code": "SPIN10-NOPE00"}).json() == {
        "valid": False, "reason": "not_found",
    }


def test_provider_failure_rolls_back_the_whole_play(client, store, shop_headers, gateway):
    shop = store.shop()
    game = store.game(shop, WIN_ONLY)
    store.rule(shop, game)
    gateway.fail = True

    r = _win(client, shop_headers, game.id)
    assert r.status_code == 502
    assert r.json() == {
        "message": "Discount provider unavailable",
        "code": "DISCOUNT_PROVIDER_ERROR",
        "kind": "external_integration_error",
    }
    with SessionLocal() as db:
        assert db.query(Play).count() == 0
        assert db.query(Discount).count() == 0
        assert db.query(Analytics).count() == 0
        assert db.query(Visitor).one().total_plays == 0

    # the failed attempt does not burn the visitor's play
    gateway.fail = False
    assert _win(client, shop_headers, game.id).status_code == 200


def test_exhausted_code_attempts_fail_loudly(client, store, shop_headers, caplog):
    shop = store.shop()
    game = store.game(shop, WIN_ONLY)
    store.rule(shop, game)
    taken = _win(client, shop_headers, game.id, fingerprint="fp-first").json()["discount"]["code"]

    caplog.set_level(logging.ERROR, logger="playengine.main")
    with patch("playengine.rewards.gen_code", return_value=taken):
        r = _win(client, shop_headers, game.id, fingerprint="fp-second")

    assert r.status_code == 500
    assert r.json()["code"] == "INTERNAL_ERROR"
    errors = [rec for rec in caplog.records if rec.name == "playengine.main" and rec.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "/api/proxy/play" in errors[0].getMessage()
    assert errors[0].exc_info is not None
    with SessionLocal() as db:
        assert db.query(Play).count() == 1
        assert db.query(Discount).count() == 1


def _spec(kind="PERCENTAGE", value=15, min_subtotal=None):
    now = utcnow()
    return DiscountSpec(
        title="Gamification: SPIN15-ABCDEF", code="SPIN15-ABCDEF", kind=kind, value=value,
        starts_at=now, ends_at=now + timedelta(days=7), usage_limit=1, min_subtotal=min_subtotal,
    )


def _client(handler):
    return ShopifyClient("test-shop.myshopify.com", "shpat_x", api_version="2025-10",
                         transport=httpx.MockTransport(handler))


def test_shopify_percentage_code():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["token"] = request.headers["X-Shopify-Access-Token"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"discountCodeBasicCreate": {
            "codeDiscountNode": {"id": "gid://shopify/DiscountCodeNode/42"}, "userErrors": [],
        }}})

    assert _client(handler).create_code(_spec(min_subtotal=30)) == "gid://shopify/DiscountCodeNode/42"
    assert seen["url"] == "https://test-shop.myshopify.com/admin/api/2025-10/graphql.json"
    assert seen["token"] == "shpat_x"
    basic = seen["body"]["variables"]["basicCodeDiscount"]
    assert basic["customerGets"]["value"] == {"percentage": 0.15}
    assert basic["minimumRequirement"] == {"subtotal": {"greaterThanOrEqualToSubtotal": 30}}
    assert basic["appliesOncePerCustomer"] is True


def test_shopify_free_shipping_uses_its_own_mutation():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"discountCodeFreeShippingCreate": {
            "codeDiscountNode": {"id": "gid://shopify/DiscountCodeNode/7"}, "userErrors": [],
        }}})

    assert _client(handler).create_code(_spec(kind="FREE_SHIPPING", value=0)) == "gid://shopify/DiscountCodeNode/7"
    assert "freeShippingCodeDiscount" in seen["body"]["variables"]


@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"data": {"discountCodeBasicCreate": {
        "codeDiscountNode": None, "userErrors": [{"field": ["code"], "message": "taken"}],
    }}}),
    httpx.Response(200, json={"data": {"discountCodeBasicCreate": {"codeDiscountNode": None, "userErrors": []}}}),
    httpx.Response(200, json={"errors": [{"message": "Throttled"}]}),
    httpx.Response(503, text="unavailable"),
])
def test_shopify_failures_raise(response):
    with pytest.raises(ExternalIntegrationError):
        _client(lambda request: response).create_code(_spec())


def test_shopify_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(ExternalIntegrationError):
        _client(handler).create_code(_spec())
