import os
import tempfile
import threading

_tmp = tempfile.mkdtemp(prefix="playengine-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test.db')}"
os.environ["ADMIN_PASSWORD"] = "letmein"
os.environ["ADMIN_PASSWORD_HASH"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SHOPIFY_API_SECRET"] = "webhook-secret"

import pytest
from fastapi.testclient import TestClient

from playengine.db import Base, SessionLocal, engine
from playengine.errors import ExternalIntegrationError
from playengine.main import app, get_gateway_factory
from playengine.models import DiscountRule, Game, GameSegment, Shop, TargetingRule

WIN_ONLY = [("10% OFF", "PERCENTAGE", 10, 1.0)]
LOSE_ONLY = [("No luck", "NO_PRIZE", 0, 1.0)]
SCENARIO = [
    ("5% OFF", "PERCENTAGE", 5, 0.30),
    ("10% OFF", "PERCENTAGE", 10, 0.25),
    ("No luck", "NO_PRIZE", 0, 0.45),
]


class FakeGateway:
    def __init__(self):
        self.specs = []
        self.fail = False
        self._lock = threading.Lock()

    def create_code(self, spec):
        if self.fail:
            raise ExternalIntegrationError("Discount provider unavailable")
        with self._lock:
            self.specs.append(spec)
            return f"gid://shopify/DiscountCodeNode/{len(self.specs)}"


class Store:
    """Writes config rows the way the admin side would, one commit per call."""

    def _save(self, *objs):
        with SessionLocal() as db:
            db.add_all(objs)
            db.commit()
        return objs[0]

    def shop(self, domain="test-shop.myshopify.com", **kw):
        return self._save(Shop(domain=domain, access_token="shpat_test", **kw))

    def game(self, shop, segments=SCENARIO, name="Lucky Wheel", is_active=True, **kw):
        game = self._save(Game(shop_id=shop.id, name=name, is_active=is_active, **kw))
        with SessionLocal() as db:
            for i, (label, kind, value, prob) in enumerate(segments):
                db.add(GameSegment(game_id=game.id, label=label, type=kind, value=value,
                                   probability=prob, color="#000000", order=i))
            db.commit()
        return game

    def rule(self, shop, game=None, **kw):
        kw.setdefault("cooldown_hours", 24)
        kw.setdefault("max_plays_per_visitor", 1)
        return self._save(DiscountRule(shop_id=shop.id, game_id=game.id if game else None, **kw))

    def targeting(self, shop, game, priority=0, criteria=None, **kw):
        return self._save(TargetingRule(shop_id=shop.id, game_id=game.id, priority=priority,
                                        criteria=criteria or {}, **kw))


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(gateway):
    app.dependency_overrides[get_gateway_factory] = lambda: (lambda shop: gateway)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def shop_headers():
    return {
        "X-Shopify-Shop-Domain": "test-shop.myshopify.com",
        "User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile Safari",
        "Accept-Language": "en-US",
    }
