import random
from collections import Counter
from types import SimpleNamespace

import pytest

from playengine.errors import NoSegmentsConfigured
from playengine.outcome import is_win, weighted_choice
from playengine.utils import spin_angle


def seg(id, probability, type="PERCENTAGE"):
    return SimpleNamespace(id=id, probability=probability, type=type)


def test_win_rates_converge_to_normalized_weights():
    segments = [seg(1, 0.3), seg(2, 0.25), seg(3, 0.45, "NO_PRIZE")]
    rng = random.Random(20240601)
    draws = 100_000
    counts = Counter(weighted_choice(segments, rng).id for _ in range(draws))
    for s in segments:
        assert abs(counts[s.id] / draws - s.probability) < 0.02


def test_weights_need_not_sum_to_one():
    segments = [seg(1, 3), seg(2, 1)]
    rng = random.Random(7)
    draws = 100_000
    counts = Counter(weighted_choice(segments, rng).id for _ in range(draws))
    assert abs(counts[1] / draws - 0.75) < 0.02
    assert abs(counts[2] / draws - 0.25) < 0.02


def test_zero_weight_segment_is_never_picked():
    segments = [seg(1, 0), seg(2, 1), seg(3, 0)]
    rng = random.Random(1)
    assert {weighted_choice(segments, rng).id for _ in range(1000)} == {2}


def test_single_positive_segment_always_wins():
    only = seg(9, 0.01)
    rng = random.Random(3)
    assert all(weighted_choice([only], rng) is only for _ in range(500))


@pytest.mark.parametrize("segments", [[], [seg(1, 0)], [seg(1, 0), seg(2, 0)]])
def test_no_positive_weight_is_rejected(segments):
    with pytest.raises(NoSegmentsConfigured):
        weighted_choice(segments)


def test_drift_falls_back_to_last_positive_segment():
    class AlmostOne(random.Random):
        def random(self):
            return 1.0  # outside [0, 1): forces a remainder after the walk

    segments = [seg(1, 0.1), seg(2, 0.2), seg(3, 0)]
    assert weighted_choice(segments, AlmostOne()).id == 2


def test_no_prize_is_a_loss():
    assert not is_win(seg(1, 1, "NO_PRIZE"))
    assert is_win(seg(1, 1, "FREE_SHIPPING"))


def test_spin_angle_lands_on_segment():
    for index in range(6):
        angle = spin_angle(index, 6)
        assert angle >= 5 * 360
        landing = (360 - angle % 360) % 360
        assert index * 60 <= landing < (index + 1) * 60
