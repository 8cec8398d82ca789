import random

import pytest

from site_analytics.core.cancel import CancelSignal
from site_analytics.core.funnel import FunnelEvaluator, conversion_rate, dropoff_rate, validate_steps
from site_analytics.errors import EvaluationCancelled, FunnelValidationError
from site_analytics.models.funnels import StepRule

from factories import at, custom, page

PRICING_SIGNUP = [StepRule(kind="page", value="/pricing"), StepRule(kind="page", value="/signup")]


def results_for(steps, events, presorted=False, **kwargs):
    evaluator = FunnelEvaluator(steps, **kwargs)
    run = evaluator.evaluate(events, presorted=presorted)
    return evaluator, run, run.step_results()


def test_pricing_to_signup():
    events = [
        page("u1", 0, "/pricing"),
        page("u1", 5, "/signup"),
        page("u2", 1, "/pricing"),
    ]

    _, _, results = results_for(PRICING_SIGNUP, events)

    assert [r.visitors for r in results] == [2, 1]
    assert [r.conversion_rate for r in results] == [100.0, 50.0]
    assert [r.dropoff_rate for r in results] == [0.0, 50.0]
    assert [r.step_number for r in results] == [1, 2]
    assert [r.step_name for r in results] == ["/pricing", "/signup"]


def test_step_before_previous_step_does_not_count():
    events = [
        page("u1", 0, "/signup"),
        page("u1", 5, "/pricing"),
    ]

    _, _, results = results_for(PRICING_SIGNUP, events)

    assert [r.visitors for r in results] == [1, 0]


def test_same_timestamp_cannot_satisfy_two_steps():
    steps = [StepRule(kind="page", value="/**"), StepRule(kind="page", value="/checkout")]
    events = [page("u1", 0, "/checkout")]

    _, _, results = results_for(steps, events)

    assert [r.visitors for r in results] == [1, 0]


def test_equal_timestamps_do_not_advance():
    events = [page("u1", 0, "/pricing"), page("u1", 0, "/signup")]

    _, _, results = results_for(PRICING_SIGNUP, events)

    assert [r.visitors for r in results] == [1, 0]


def test_earliest_entry_is_used():
    steps = PRICING_SIGNUP + [StepRule(kind="event", value="paid")]
    events = [
        page("u1", 0, "/pricing"),
        page("u1", 3, "/signup"),
        page("u1", 4, "/pricing"),
        custom("u1", 9, "paid"),
    ]

    evaluator, run, results = results_for(steps, events)

    assert [r.visitors for r in results] == [1, 1, 1]
    assert [hit.timestamp for hit in (run.hits[0][0], run.hits[1][0], run.hits[2][0])] == [at(0), at(3), at(9)]


def test_users_who_never_enter_are_excluded():
    events = [page("u1", 0, "/signup"), page("u2", 0, "/home")]

    _, _, results = results_for(PRICING_SIGNUP, events)

    assert [r.visitors for r in results] == [0, 0]
    assert all(r.conversion_rate == 0 and r.dropoff_rate == 0 for r in results)


def test_empty_stream_gives_zero_results():
    _, _, results = results_for(PRICING_SIGNUP, [])

    assert [(r.visitors, r.conversion_rate, r.dropoff_rate) for r in results] == [(0, 0.0, 0.0), (0, 0.0, 0.0)]


def test_events_without_user_are_ignored():
    events = [page("", 0, "/pricing"), page("", 1, "/signup")]

    _, _, results = results_for(PRICING_SIGNUP, events)

    assert [r.visitors for r in results] == [0, 0]


def test_visitors_never_increase_and_rates_follow_formula():
    rng = random.Random(7)
    paths = ["/pricing", "/signup", "/welcome", "/home"]
    events = [
        page(f"u{rng.randint(0, 40)}", rng.randint(0, 500), rng.choice(paths))
        for _ in range(600)
    ]
    steps = [StepRule(kind="page", value=p) for p in paths[:3]]

    _, _, results = results_for(steps, events)

    visitors = [r.visitors for r in results]
    assert all(visitors[i] <= visitors[i - 1] for i in range(1, len(visitors)))
    assert results[0].dropoff_rate == 0
    for r in results:
        assert r.conversion_rate == (round(r.visitors * 100 / visitors[0], 2) if visitors[0] else 0)


def test_rate_helpers_round_and_guard_zero():
    assert conversion_rate(1, 3) == 33.33
    assert conversion_rate(5, 0) == 0
    assert dropoff_rate(2, 3) == 33.33
    assert dropoff_rate(0, 0) == 0


def test_fewer_than_two_steps_is_rejected():
    with pytest.raises(FunnelValidationError):
        validate_steps([StepRule(kind="page", value="/a")])
    with pytest.raises(FunnelValidationError):
        FunnelEvaluator([])


def test_step_details_entries_and_top_labels():
    steps = [StepRule(kind="page", value="/blog/*"), StepRule(kind="event", value="subscribe")]
    events = [
        page("u1", 1, "/blog/b"),
        page("u2", 2, "/blog/a"),
        page("u3", 3, "/blog/a"),
        page("u4", 0, "/blog/c"),
        custom("u2", 5, "subscribe"),
    ]

    evaluator, run, _ = results_for(steps, events)
    details = evaluator.step_details(run, 0)

    assert details.kind == "page"
    assert [(t.label, t.distinct_users) for t in details.top_labels] == [("/blog/a", 2), ("/blog/c", 1), ("/blog/b", 1)]
    assert [e.user_id for e in details.entries] == ["u4", "u1", "u2", "u3"]
    assert details.entries[0].kind == "pageview"
    assert details.entries[0].session_id == "s-u4"

    second = evaluator.step_details(run, 1)
    assert [(e.label, e.user_id) for e in second.entries] == [("subscribe", "u2")]


def test_step_details_caps_entries_and_labels():
    steps = [StepRule(kind="page", value="/p/*"), StepRule(kind="page", value="/done")]
    events = [page(f"u{i}", i, f"/p/{i}") for i in range(10)]

    evaluator, run, _ = results_for(steps, events, max_entries=4, top_labels=3)
    details = evaluator.step_details(run, 0)

    assert len(details.entries) == 4
    assert len(details.top_labels) == 3


def test_presorted_stream_matches_unsorted_evaluation():
    events = [
        page("u2", 3, "/signup"),
        page("u1", 5, "/signup"),
        page("u2", 1, "/pricing"),
        page("u1", 0, "/pricing"),
    ]
    presorted = sorted(events, key=lambda e: (e.user_id, e.timestamp))

    _, _, unsorted_results = results_for(PRICING_SIGNUP, events, presorted=False)
    _, _, sorted_results = results_for(PRICING_SIGNUP, presorted, presorted=True)

    assert [r.visitors for r in unsorted_results] == [r.visitors for r in sorted_results] == [2, 2]


def test_cancelled_evaluation_raises():
    cancel = CancelSignal()
    cancel.cancel("client went away")

    with pytest.raises(EvaluationCancelled, match="client went away"):
        FunnelEvaluator(PRICING_SIGNUP).evaluate([page("u1", 0, "/pricing")], cancel=cancel)
