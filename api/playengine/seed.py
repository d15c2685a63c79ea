"""Create a demo shop with a spin wheel, its segments and a discount rule.

    python -m playengine.seed [shop-domain]
"""
import os
import sys

from .db import Base, SessionLocal, engine
from .models import DiscountRule, Game, GameSegment, Shop, SPIN_WHEEL

SEGMENTS = [
    ("5% OFF", "PERCENTAGE", 5, 0.30, "#7367f0"),
    ("10% OFF", "PERCENTAGE", 10, 0.25, "#28c76f"),
    ("No luck", "NO_PRIZE", 0, 0.20, "#82868b"),
    ("15% OFF", "PERCENTAGE", 15, 0.15, "#ff9f43"),
    ("Free shipping", "FREE_SHIPPING", 0, 0.05, "#00cfe8"),
    ("20% OFF", "PERCENTAGE", 20, 0.05, "#ea5455"),
]


def seed(domain: str) -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        shop = db.query(Shop).filter(Shop.domain == domain).first()
        if not shop:
            shop = Shop(domain=domain, name="Test Store", access_token=os.getenv("TEST_STORE_ACCESS_TOKEN"))
            db.add(shop); db.flush()
            print("shop created:", domain)

        game = db.query(Game).filter(Game.shop_id == shop.id, Game.type == SPIN_WHEEL).first()
        if not game:
            game = Game(
                shop_id=shop.id,
                type=SPIN_WHEEL,
                name="Lucky Wheel",
                is_active=True,
                trigger="TIME_ON_PAGE",
                trigger_value=3000,
                config={
                    "title": "Spin to win!",
                    "subtitle": "Spin the wheel for a discount",
                    "buttonText": "Spin",
                    "showOnPages": ["/", "/collections/*", "/products/*"],
                },
            )
            db.add(game); db.flush()
            for i, (label, kind, value, prob, color) in enumerate(SEGMENTS):
                db.add(GameSegment(game_id=game.id, label=label, type=kind, value=value,
                                   probability=prob, color=color, order=i))
            print("game created with", len(SEGMENTS), "segments")

        if not db.query(DiscountRule).filter(DiscountRule.shop_id == shop.id).first():
            db.add(DiscountRule(
                shop_id=shop.id,
                game_id=game.id,
                name="Default rule",
                max_plays_per_visitor=1,
                max_wins_per_visitor=1,
                cooldown_hours=24,
                validity_days=7,
                max_redemptions_per_code=1,
                combine_with_shipping=True,
            ))
            print("discount rule created")

        db.commit()
        print("shop_id =", shop.id, "game_id =", game.id)
    finally:
        db.close()


if __name__ == "__main__":
    seed(sys.argv[1] if len(sys.argv) > 1 else "demo-store.myshopify.com")
