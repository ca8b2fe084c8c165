from __future__ import annotations

import random
from typing import Optional, Union

from .config import DelayConfig

Seed = Optional[Union[int, str]]


def decision_rng(seed: Seed, game_id: str, hand_id: int, action_count: int) -> random.Random:
    """Random source for one decision point.

    Seeded games replay identically; an unseeded game still gets an independent
    stream per decision so retries of the same job do not bias each other.
    """
    if seed is None:
        return random.Random()
    return random.Random(f"{seed}:{game_id}:{hand_id}:{action_count}")


def jitter_ms(delays: DelayConfig, rng: random.Random) -> int:
    span = max(0, delays.max_ms - delays.min_ms + 1)
    jitter = delays.min_ms + int(rng.random() * span)
    return max(0, int(jitter / max(0.1, delays.speed_multiplier)))
