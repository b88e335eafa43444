import pytest

from jobtracker.core.managers.stats import compute_stats, summarize_batch
from jobtracker.core.models.job import JobKind

from fakes import record


def test_empty_history():
    stats = compute_stats([])
    assert stats.total == 0
    assert stats.success_rate == 0.0
    assert stats.success_rate_display == "0.0"


@pytest.mark.parametrize(
    "states",
    [
        ["Completed", "Completed", {"Failed": "x"}, "Cancelled", "Running", "Pending"],
        ["Completed"] * 7,
        [{"Failed": "a"}, {"Failed": "b"}, "Running"],
    ],
)
def test_counts_add_up_and_rate_is_raw_ratio(states):
    entries = [record(f"j{i}", state) for i, state in enumerate(states)]
    stats = compute_stats(entries)
    assert stats.completed + stats.failed + stats.cancelled + stats.running + stats.pending == stats.total
    assert stats.total == len(states)
    assert stats.success_rate == stats.completed / stats.total


def test_rate_display_is_rounded_but_value_is_not():
    entries = [record("a", "Completed"), record("b", "Running"), record("c", "Running")]
    stats = compute_stats(entries)
    assert stats.success_rate == pytest.approx(1 / 3)
    assert stats.success_rate_display == "33.3"


def test_summarize_batch_counts_missing_as_failed():
    summary = summarize_batch(
        "b1",
        JobKind.token_burn,
        ["a", "b", "c"],
        [record("a", "Completed"), None, record("c", "Running")],
        launch_errors=["#3: rejected"],
    )
    assert (summary.total, summary.completed, summary.failed, summary.running) == (3, 1, 1, 1)
    assert summary.is_complete is False
    assert summary.launch_errors == ["#3: rejected"]
