"""
Tests: stage progress calculation.

Pure function tests; no database involved.
"""

from types import SimpleNamespace

import pytest

from app.services.progress import StageProgress, stage_progress, status_label


def _items(completed, total):
    return [SimpleNamespace(is_completed=i < completed) for i in range(total)]


def test_empty_checklist_is_zero_and_not_complete():
    p = stage_progress([])
    assert p == StageProgress(0, 0, 0, False)


def test_half_done_is_fifty_percent():
    p = stage_progress(_items(2, 4))
    assert p.completed_count == 2
    assert p.total_count == 4
    assert p.percent == 50
    assert p.is_fully_complete is False


def test_all_done_is_fully_complete():
    p = stage_progress(_items(3, 3))
    assert p.percent == 100
    assert p.is_fully_complete is True


@pytest.mark.parametrize("completed,total,expected", [
    (1, 8, 13),    # 12.5 rounds half-up
    (1, 3, 33),
    (2, 3, 67),
    (5, 8, 63),    # 62.5 rounds half-up
    (0, 7, 0),
])
def test_percent_rounds_half_up(completed, total, expected):
    assert stage_progress(_items(completed, total)).percent == expected


def test_percent_never_decreases_as_items_complete():
    total = 7
    percents = [stage_progress(_items(done, total)).percent for done in range(total + 1)]
    assert percents == sorted(percents)
    assert percents[-1] == 100
    assert all(p <= 100 for p in percents)


def test_accepts_any_iterable():
    p = stage_progress(iter(_items(1, 2)))
    assert p.percent == 50


def test_status_label():
    assert status_label(stage_progress([])) == "pending"
    assert status_label(stage_progress(_items(0, 2))) == "pending"
    assert status_label(stage_progress(_items(1, 2))) == "in_progress"
    assert status_label(stage_progress(_items(2, 2))) == "completed"


def test_to_dict_shape():
    assert stage_progress(_items(1, 4)).to_dict() == {
        "completed_count": 1,
        "total_count": 4,
        "percent": 25,
        "is_fully_complete": False,
    }
