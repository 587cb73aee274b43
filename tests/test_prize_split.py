import pytest

from petcontest.services.competition.prize_split import calculate_prize_split


def test_three_or_more_entries_split_50_30_20():
    assert calculate_prize_split(300, 3) == [150, 90, 60]
    assert calculate_prize_split(300, 12) == [150, 90, 60]


def test_two_entries_split_67_33():
    assert calculate_prize_split(100, 2) == [67, 33]


def test_single_entry_takes_whole_pool():
    assert calculate_prize_split(50, 1) == [50]


def test_last_place_absorbs_rounding():
    # 50% and 30% of 7 floor to 3 and 2
    assert calculate_prize_split(7, 3) == [3, 2, 2]
    assert calculate_prize_split(1, 2) == [0, 1]


def test_empty_pool_or_no_entries():
    assert calculate_prize_split(0, 0) == []
    assert calculate_prize_split(0, 3) == [0, 0, 0]
    assert calculate_prize_split(0, 1) == [0]


@pytest.mark.parametrize("entry_count", [1, 2, 3, 5])
def test_prizes_always_sum_to_pool(entry_count):
    for pool in range(0, 1001):
        prizes = calculate_prize_split(pool, entry_count)
        assert len(prizes) == min(entry_count, 3)
        assert all(prize >= 0 for prize in prizes)
        assert sum(prizes) == pool
