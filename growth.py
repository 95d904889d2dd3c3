import logging
import random
from typing import Callable, Optional, Sequence

from referral import REFERRER_CAPACITY

logger = logging.getLogger(__name__)

POOL_SIZE = 100  # synthetic referrers in every simulation
BONUS_INCREMENT = 10  # bonus offered in $10 increments
BONUS_CEILING = 10_000
MAX_SIMULATION_DAYS = 10_000  # default cap for days_to_target

Oracle = Callable[[float, int], Sequence[float]]


def _check_probability(p: float) -> None:
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"probability must be in [0, 1], got {p!r}")


def _check_days(days: int) -> None:
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days!r}")


class CapacityPool:
    """
    A fixed set of synthetic referrers, each with a remaining referral capacity.

    Independent of any ReferralNetwork: it models an abstract population, and a
    new pool is built for every simulation run.
    """

    def __init__(self, size: int = POOL_SIZE, capacity: int = REFERRER_CAPACITY):
        if size < 0 or capacity < 0:
            raise ValueError("pool size and capacity must be non-negative")
        self.remaining: dict[int, int] = {referrer: capacity for referrer in range(size)}

    @property
    def total_remaining(self) -> int:
        return sum(self.remaining.values())

    @property
    def exhausted(self) -> bool:
        return self.total_remaining == 0

    def advance_day(self, p: float, rng: random.Random) -> int:
        """
        Each active referrer succeeds with probability p, at most once per day.
        A success consumes one unit of capacity. Returns the day's referrals.
        """
        successes = 0
        for referrer, capacity in self.remaining.items():
            if capacity > 0 and rng.random() < p:
                self.remaining[referrer] = capacity - 1
                successes += 1
        return successes


# =============================================================================
# Growth simulation
# =============================================================================

def simulate(
    p: float,
    days: int,
    rng: Optional[random.Random] = None,
    pool_size: int = POOL_SIZE,
    capacity: int = REFERRER_CAPACITY,
) -> list[int]:
    """
    Cumulative referrals at the end of each day, over a fresh pool.

    The result has one entry per day, never decreases, and is bounded by
    pool_size * capacity. Without an explicit rng every call draws from its own
    independently seeded generator.
    """
    _check_probability(p)
    _check_days(days)
    if rng is None:
        rng = random.Random()

    pool = CapacityPool(pool_size, capacity)
    cumulative = []
    total = 0
    for _ in range(days):
        total += pool.advance_day(p, rng)
        cumulative.append(total)
    return cumulative


def expected_growth(
    p: float,
    days: int,
    pool_size: int = POOL_SIZE,
    capacity: int = REFERRER_CAPACITY,
) -> list[float]:
    """
    Expected cumulative referrals at the end of each day, same rules as simulate().

    Tracks the expected number of referrers at every remaining-capacity level:
    each day a referrer with capacity c > 0 moves to c - 1 with probability p.
    """
    _check_probability(p)
    _check_days(days)

    # by_capacity[c] = expected count of referrers with c referrals left, index 0 = inactive
    by_capacity = [0.0] * (capacity + 1)
    by_capacity[capacity] = float(pool_size)

    cumulative = []
    total = 0.0
    for _ in range(days):
        total += sum(by_capacity[1:]) * p
        shifted = [0.0] * (capacity + 1)
        shifted[0] = by_capacity[0]
        for c in range(1, capacity + 1):
            shifted[c] += by_capacity[c] * (1 - p)
            shifted[c - 1] += by_capacity[c] * p
        by_capacity = shifted
        cumulative.append(total)
    return cumulative


def days_to_target(
    p: float,
    target: int,
    rng: Optional[random.Random] = None,
    max_days: int = MAX_SIMULATION_DAYS,
    pool_size: int = POOL_SIZE,
    capacity: int = REFERRER_CAPACITY,
) -> Optional[int]:
    """
    Number of simulated days until cumulative referrals reach target.

    A fresh pool is built per call and carried across the simulated days.
    Returns None when the target cannot be reached: it exceeds the pool's total
    capacity, p is zero, or it is not met within max_days.
    """
    _check_probability(p)
    if target <= 0:
        return 0
    if rng is None:
        rng = random.Random()

    pool = CapacityPool(pool_size, capacity)
    if target > pool.total_remaining or p == 0:
        logger.warning("Target of %d referrals is unreachable with p=%s", target, p)
        return None

    total = 0
    day = 0
    while day < max_days:
        day += 1
        total += pool.advance_day(p, rng)
        if total >= target:
            return day
    logger.warning("Gave up on target of %d referrals after %d days (reached %d)", target, day, total)
    return None


# =============================================================================
# Incentive optimization
# =============================================================================

def min_bonus_for_target(
    days: int,
    target_hires: int,
    adoption_prob: Callable[[int], float],
    eps: float = 1e-3,
    rng: Optional[random.Random] = None,
    oracle: Optional[Oracle] = None,
    increment: int = BONUS_INCREMENT,
    ceiling: int = BONUS_CEILING,
) -> Optional[int]:
    """
    Find the minimum bonus (in `increment` steps, up to `ceiling`) whose adoption
    probability drives growth over `days` to at least `target_hires`.

    Args:
        days: number of days to simulate
        target_hires: cumulative referrals to reach by the last day
        adoption_prob: maps bonus -> probability in [0, 1]; must be monotonic non-decreasing
        eps: stop once the smallest known passing bonus is within eps of the lowest candidate left
        rng: generator shared by every simulation of the search
        oracle: (p, days) -> cumulative referrals per day; defaults to simulate()

    Returns:
        Smallest bonus found to reach the target, or None if even the ceiling does not.
    """
    _check_days(days)
    if eps < 0:
        raise ValueError("eps must be non-negative")
    if increment <= 0:
        raise ValueError("increment must be positive")
    if oracle is None:
        if rng is None:
            rng = random.Random()

        def oracle(p, n):
            return simulate(p, n, rng=rng)

    def reaches_target(bonus: int) -> bool:
        p = adoption_prob(bonus)
        _check_probability(p)
        growth = oracle(p, days)
        final = growth[-1] if growth else 0
        logger.debug("bonus=%d p=%.4f -> %s referrals", bonus, p, final)
        return final >= target_hires

    high = ceiling // increment * increment
    if not reaches_target(high):
        logger.info("No bonus up to %d reaches %d hires in %d days", high, target_hires, days)
        return None

    # true minimum lies in [low, best]
    low, best = 0, high
    high -= increment
    while low <= high and best - low > eps:
        mid = round((low + high) / 2 / increment) * increment
        if reaches_target(mid):
            best = mid
            high = mid - increment
        else:
            low = mid + increment

    logger.info("Minimum bonus for %d hires in %d days: %d", target_hires, days, best)
    return best
