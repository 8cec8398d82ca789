from site_analytics.core.goals import GoalEvaluator, attach_session_pages, goal_predicate
from site_analytics.models.goals import GoalConfig, GoalDefinition

from factories import at, custom, page


def path_goal(goal_id, pattern):
    return GoalDefinition(id=goal_id, kind="path", config=GoalConfig(path_pattern=pattern))


def event_goal(goal_id, name, key=None, value=None):
    return GoalDefinition(
        id=goal_id,
        kind="event",
        config=GoalConfig(event_name=name, event_property_key=key, event_property_value=value),
    )


def by_id(results):
    return {result.id: result for result in results}


def test_hash_token_goals_match_full_url_and_querystring():
    events = [
        page("u1", 0, "/x", "?fbclid=123", session_id="s1"),
        page("u2", 0, "/fbclid", "", session_id="s2"),
    ]
    goals = [path_goal(1, "#fbclid#"), path_goal(2, "#fbclid")]

    results = by_id(GoalEvaluator(goals).evaluate_all(events, total_sessions=2))

    assert results[1].total_conversions == 2
    assert results[2].total_conversions == 1
    assert [e.session_id for e in results[2].matched_entries] == ["s1"]


def test_event_goal_with_property():
    events = [
        custom("u1", 0, "upgrade", {"plan": "pro"}, session_id="s1"),
        custom("u2", 0, "upgrade", {"plan": "free"}, session_id="s2"),
        custom("u3", 0, "downgrade", {"plan": "pro"}, session_id="s3"),
    ]
    goal = event_goal(1, "upgrade", "plan", "pro")

    [result] = GoalEvaluator([goal]).evaluate_all(events, total_sessions=4)

    assert result.total_conversions == 1
    assert result.conversion_rate == 0.25
    assert result.match_scope == "custom_event"
    assert result.matched_actions == ["upgrade"]
    assert result.matched_pages is None
    assert result.matched_entries[0].matched_label == "upgrade"


def test_conversions_count_distinct_sessions_with_shared_denominator():
    events = [
        page("u1", 0, "/pricing", session_id="s1"),
        page("u1", 1, "/pricing", session_id="s1"),
        page("u1", 9, "/pricing", session_id="s2"),
        page("u2", 2, "/checkout", session_id="s3"),
    ]
    goals = [path_goal(1, "/pricing"), path_goal(2, "/checkout"), path_goal(3, "/nowhere")]

    results = by_id(GoalEvaluator(goals).evaluate_all(events, total_sessions=10))

    assert results[1].total_conversions == 2
    assert results[1].conversion_rate == 0.2
    assert results[2].total_conversions == 1
    assert results[3].total_conversions == 0
    assert {r.total_sessions for r in results.values()} == {10}


def test_zero_sessions_gives_zero_rate():
    [result] = GoalEvaluator([path_goal(1, "/a")]).evaluate_all([], total_sessions=0)

    assert result.total_conversions == 0
    assert result.conversion_rate == 0


def test_goals_missing_configuration_are_skipped():
    goals = [
        path_goal(1, ""),
        GoalDefinition(id=2, kind="event", config=GoalConfig()),
        path_goal(3, "/a"),
    ]

    evaluator = GoalEvaluator(goals)
    results = evaluator.evaluate_all([page("u1", 0, "/a")], total_sessions=1)

    assert [r.id for r in results] == [3]
    assert [g.id for g in evaluator.goals] == [3]
    assert goal_predicate(goals[0]) is None


def test_matched_entry_records_first_qualifying_event():
    events = [
        page("u1", 5, "/blog/b", session_id="s1"),
        page("u1", 2, "/blog/a", session_id="s1"),
        page("u1", 7, "/blog/c", session_id="s1"),
    ]

    [result] = GoalEvaluator([path_goal(1, "/blog/*")]).evaluate_all(events, total_sessions=1)

    [entry] = result.matched_entries
    assert entry.matched_at == at(2)
    assert entry.matched_label == "/blog/a"
    assert entry.user_id == "u1"
    assert result.matched_pages == ["/blog/b", "/blog/a", "/blog/c"]
    assert result.path_regex == "^/blog/[^/]*$"


def test_every_converting_session_has_a_matched_entry():
    events = [page(f"u{i}", i % 60, "/a", session_id=f"s{i}") for i in range(15001)]

    [result] = GoalEvaluator([path_goal(1, "/a")]).evaluate_all(events, total_sessions=15001)

    assert result.total_conversions == 15001
    assert len(result.matched_entries) == result.total_conversions


def test_prefilter_combines_goal_predicates():
    evaluator = GoalEvaluator([path_goal(1, "/a"), event_goal(2, "signup"), path_goal(3, "")])

    prefilter = evaluator.prefilter()

    assert len(prefilter.children) == 2
    assert prefilter.matches(custom("u1", 0, "signup"))
    assert not prefilter.matches(page("u1", 0, "/b"))


def test_attach_session_pages_only_touches_path_goals():
    events = [page("u1", 0, "/a", session_id="s1"), custom("u1", 1, "signup", session_id="s1")]
    path_result, event_result = GoalEvaluator([path_goal(1, "/a"), event_goal(2, "signup")]).evaluate_all(
        events, total_sessions=1
    )
    pages = {"s1": ("/landing", "/thanks")}

    enriched = attach_session_pages(path_result, pages)

    assert (enriched.matched_entries[0].entry_page, enriched.matched_entries[0].exit_page) == ("/landing", "/thanks")
    assert attach_session_pages(event_result, pages) is event_result
    assert path_result.matched_entries[0].entry_page is None
