import threading
from unittest.mock import patch

from conftest import SCENARIO, WIN_ONLY

from playengine import engine
from playengine.db import SessionLocal
from playengine.eligibility import Eligibility, check_eligibility
from playengine.errors import RateLimitedError
from playengine.identity import RequestSignals
from playengine.models import WIN, Analytics, Discount, Play
from playengine.schemas import InitRequest, PlayRequest


def _session_token(shop, fingerprint):
    with SessionLocal() as db:
        out = engine.init_visit(db, shop.domain, RequestSignals(user_agent="pytest"), InitRequest(fingerprint=fingerprint))
    return out.session_token


def _race(tokens, game_id, gateway):
    barrier = threading.Barrier(len(tokens))
    results, lock = [], threading.Lock()

    def worker(token):
        db = SessionLocal()
        try:
            barrier.wait()
            engine.play(db, PlayRequest(session_token=token, game_id=game_id), lambda shop: gateway)
            outcome = "ok"
        except RateLimitedError:
            outcome = "limited"
        except Exception as e:  # surfaced in the assertion message
            outcome = repr(e)
        finally:
            db.close()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker, args=(t,)) for t in tokens]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def test_concurrent_plays_never_exceed_limit(store, gateway):
    shop = store.shop()
    game = store.game(shop, WIN_ONLY)
    store.rule(shop, game, max_plays_per_visitor=2, cooldown_hours=24)
    token = _session_token(shop, "fp-race")

    results = _race([token] * 3, game.id, gateway)

    assert sorted(results) == ["limited", "ok", "ok"], results
    with SessionLocal() as db:
        assert db.query(Play).count() == 2
        assert db.query(Discount).count() == 2
        assert sorted(p.sequence for p in db.query(Play).all()) == [1, 2]
    assert len(gateway.specs) == 2


def test_replayed_play_from_many_tabs_grants_once(store, gateway):
    shop = store.shop()
    game = store.game(shop, WIN_ONLY)
    store.rule(shop, game, max_plays_per_visitor=1)
    token = _session_token(shop, "fp-tabs")

    results = _race([token] * 5, game.id, gateway)

    assert results.count("ok") == 1, results
    assert results.count("limited") == 4, results
    with SessionLocal() as db:
        assert db.query(Discount).count() == 1


def test_stale_history_read_conflicts_and_is_rechecked(store, gateway):
    shop = store.shop()
    game = store.game(shop, WIN_ONLY)
    store.rule(shop, game, max_plays_per_visitor=2)
    token = _session_token(shop, "fp-stale")

    with SessionLocal() as db:
        engine.play(db, PlayRequest(session_token=token, game_id=game.id), lambda shop: gateway)

    calls = []

    def stale_then_real(db, visitor_id, game_id, r, now):
        calls.append(1)
        if len(calls) == 1:
            # as if the first play had not been committed yet
            return Eligibility(can_play=True, cooldown_remaining_ms=0, plays_in_window=0, last_sequence=0)
        return check_eligibility(db, visitor_id, game_id, r, now)

    with patch("playengine.engine.check_eligibility", side_effect=stale_then_real):
        with SessionLocal() as db:
            engine.play(db, PlayRequest(session_token=token, game_id=game.id), lambda shop: gateway)

    assert len(calls) == 2
    with SessionLocal() as db:
        assert sorted(p.sequence for p in db.query(Play).all()) == [1, 2]
        # the rolled back attempt left no discount behind
        assert db.query(Discount).count() == 2


def test_concurrent_plays_from_many_visitors_add_up_in_analytics(store, gateway):
    shop = store.shop()
    game = store.game(shop, SCENARIO)
    store.rule(shop, game, max_plays_per_visitor=1)
    tokens = [_session_token(shop, f"fp-crowd-{i}") for i in range(8)]

    results = _race(tokens, game.id, gateway)

    assert results == ["ok"] * 8, results
    with SessionLocal() as db:
        wins = db.query(Play).filter(Play.result == WIN).count()
        row = db.query(Analytics).filter(Analytics.scope == str(game.id)).one()
        assert row.plays == 8
        assert row.wins == wins
        assert db.query(Discount).count() == wins
