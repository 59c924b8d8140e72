"""
Shuffle strategies for clip playlists.

All functions are pure: they return a new list and never touch their input.
Each accepts an optional `rng` (a `random.Random`) so callers can seed them.
"""
import logging
import random
from typing import List, Optional, Sequence

from ..models import (
    Clip,
    ShuffleStrategy,
    SmartShuffle,
    StratifiedShuffle,
    UniformShuffle,
    WeightedShuffle,
)

logger = logging.getLogger(__name__)

STRATA = 4
# Pool size thresholds for the smart strategy
STRATIFIED_MIN_POOL = 200
WEIGHTED_MIN_POOL = 50
SMART_DIVERSITY = 0.3


def _rng(rng: Optional[random.Random]):
    return rng if rng is not None else random


def uniform_shuffle(clips: Sequence[Clip], rng: Optional[random.Random] = None) -> List[Clip]:
    """Unbiased Fisher-Yates permutation."""
    r = _rng(rng)
    shuffled = list(clips)
    for i in range(len(shuffled) - 1, 0, -1):
        j = r.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def stratified_shuffle(clips: Sequence[Clip], rng: Optional[random.Random] = None) -> List[Clip]:
    """
    Splits clips into view-count quartiles (by rank), shuffles each quartile,
    then deals one clip from each quartile per round so popular and obscure
    clips alternate.
    """
    if len(clips) <= 1:
        return list(clips)

    ranked = sorted(clips, key=lambda c: c.view_count, reverse=True)
    bounds = [len(ranked) * i // STRATA for i in range(STRATA + 1)]
    buckets = [
        uniform_shuffle(ranked[bounds[i]:bounds[i + 1]], rng)
        for i in range(STRATA)
        if bounds[i + 1] > bounds[i]
    ]

    result = []
    for i in range(max(len(b) for b in buckets)):
        for bucket in buckets:
            if i < len(bucket):
                result.append(bucket[i])

    logger.debug(f"Stratified shuffle: {len(clips)} clips across {len(buckets)} view count ranges")
    return result


def weighted_shuffle(
    clips: Sequence[Clip],
    diversity: float = SMART_DIVERSITY,
    rng: Optional[random.Random] = None,
) -> List[Clip]:
    """
    Weighted sampling without replacement, biased toward higher view counts.

    weight = normalized_views * (1 - diversity) + diversity, where view counts
    are scaled linearly to [0, 1] across the pool (1.0 for all if they are equal).
    Higher diversity flattens the weights toward uniform.
    """
    if len(clips) <= 1:
        return list(clips)

    diversity = min(max(diversity, 0.0), 1.0)
    r = _rng(rng)

    views = [c.view_count for c in clips]
    low, high = min(views), max(views)
    spread = high - low

    remaining = []
    for clip in clips:
        normalized = (clip.view_count - low) / spread if spread else 1.0
        remaining.append((clip, normalized * (1 - diversity) + diversity))

    result = []
    while remaining:
        total = sum(weight for _, weight in remaining)
        if total <= 0:
            # Only zero-weight clips are left; draw them uniformly
            result.extend(uniform_shuffle([clip for clip, _ in remaining], rng))
            break

        point = r.random() * total
        chosen = len(remaining) - 1
        for i, (_, weight) in enumerate(remaining):
            point -= weight
            if point < 0:
                chosen = i
                break
        result.append(remaining.pop(chosen)[0])

    logger.debug(f"Weighted shuffle: diversity {diversity} over {len(clips)} clips")
    return result


def resolve_strategy(strategy: ShuffleStrategy, pool_size: int) -> ShuffleStrategy:
    """Turns Smart into a concrete strategy for a pool of `pool_size` clips."""
    if not isinstance(strategy, SmartShuffle):
        return strategy
    if pool_size > STRATIFIED_MIN_POOL:
        return StratifiedShuffle()
    if pool_size > WEIGHTED_MIN_POOL:
        return WeightedShuffle(diversity=SMART_DIVERSITY)
    return UniformShuffle()


def smart_shuffle(clips: Sequence[Clip], rng: Optional[random.Random] = None) -> List[Clip]:
    return apply_strategy(clips, SmartShuffle(), rng)


def apply_strategy(
    clips: Sequence[Clip],
    strategy: ShuffleStrategy,
    rng: Optional[random.Random] = None,
) -> List[Clip]:
    """Shuffles `clips` with the given strategy."""
    concrete = resolve_strategy(strategy, len(clips))

    if isinstance(concrete, UniformShuffle):
        return uniform_shuffle(clips, rng)
    if isinstance(concrete, StratifiedShuffle):
        return stratified_shuffle(clips, rng)
    if isinstance(concrete, WeightedShuffle):
        return weighted_shuffle(clips, concrete.diversity, rng)
    raise TypeError(f"Unknown shuffle strategy: {strategy!r}")
