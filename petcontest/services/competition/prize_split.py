"""
Prize split for the daily competition.

Pool shares by number of ranked entries:
- 1 entry:  100%
- 2 entries: 67% / remainder
- 3+ entries: 50% / 30% / remainder

Shares are floored and the last paid place absorbs the rounding remainder,
so the prizes always sum to the pool exactly. Only the top 3 are ever paid.
"""
from typing import List


def calculate_prize_split(prize_pool: int, entry_count: int) -> List[int]:
    """Return the prize for each ranked place, best first."""
    if entry_count <= 0 or prize_pool <= 0:
        return [0] * min(max(entry_count, 0), 3)

    if entry_count == 1:
        return [prize_pool]

    if entry_count == 2:
        # Integer percentages keep the floor exact for any pool size
        first = prize_pool * 67 // 100
        return [first, prize_pool - first]

    first = prize_pool * 50 // 100
    second = prize_pool * 30 // 100
    return [first, second, prize_pool - first - second]
