import random
from typing import Sequence, TypeVar

from .errors import NoSegmentsConfigured
from .models import NO_PRIZE

T = TypeVar("T")

_rng = random.SystemRandom()


def weighted_choice(segments: Sequence[T], rng: random.Random | None = None) -> T:
    """Pick one segment with probability weight / total weight.

    Weights need not sum to 1. A zero-weight segment is never picked; when
    float drift leaves a remainder after the walk, the last positive-weight
    segment is returned.
    """
    rng = rng or _rng
    weighted = [(s, float(s.probability or 0)) for s in segments]
    weighted = [(s, w) for s, w in weighted if w > 0]
    total = sum(w for _, w in weighted)
    if total <= 0:
        raise NoSegmentsConfigured()

    remaining = rng.random() * total
    for seg, w in weighted:
        remaining -= w
        if remaining <= 0:
            return seg
    return weighted[-1][0]


def is_win(segment) -> bool:
    return segment.type != NO_PRIZE
