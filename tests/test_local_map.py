from orbpose.local_map import (
    LocalKeyFrameSelection,
    collect_local_points,
    count_keyframe_votes,
    select_local_keyframes,
)


def graph(covisibles=None, childs=None, parents=None, bad=()):
    covisibles = covisibles or {}
    childs = childs or {}
    parents = parents or {}
    return dict(
        is_bad=lambda kf: kf in bad,
        best_covisibles=lambda kf, n: covisibles.get(kf, [])[:n],
        children=lambda kf: childs.get(kf, []),
        parent=lambda kf: parents.get(kf),
    )


def test_count_keyframe_votes():
    votes = count_keyframe_votes([["a", "b"], ["a"], None, ["c", "a"]])
    assert votes == {"a": 3, "b": 1, "c": 1}
    assert list(votes) == ["a", "b", "c"]


def test_empty_votes_give_none():
    assert select_local_keyframes({}, **graph()) is None


def test_reference_has_most_votes_and_neighbours_are_added():
    selection = select_local_keyframes(
        {"a": 2, "b": 3},
        **graph(covisibles={"a": ["b", "c"], "b": ["d", "e"]}),
    )
    assert selection == LocalKeyFrameSelection(["a", "b", "c", "d"], "b")


def test_tie_keeps_first_keyframe_as_reference():
    selection = select_local_keyframes({"a": 2, "b": 2}, **graph())
    assert selection.reference == "a"
    assert selection.keyframes == ["a", "b"]


def test_bad_keyframes_are_excluded():
    selection = select_local_keyframes(
        {"a": 1, "x": 5},
        **graph(covisibles={"a": ["y", "c"]}, bad={"x", "y"}),
    )
    assert selection.reference == "a"
    assert selection.keyframes == ["a", "c"]


def test_child_is_added():
    selection = select_local_keyframes(
        {"a": 1},
        **graph(childs={"a": ["a", "k1", "k2"]}),
    )
    assert selection.keyframes == ["a", "k1"]


def test_adding_a_parent_ends_expansion():
    selection = select_local_keyframes(
        {"a": 1, "b": 1},
        **graph(covisibles={"b": ["d"]}, parents={"a": "p"}),
    )
    assert selection.keyframes == ["a", "b", "p"]
    assert "d" not in selection.keyframes


def test_included_parent_does_not_end_expansion():
    selection = select_local_keyframes(
        {"a": 1, "b": 1},
        **graph(covisibles={"b": ["d"]}, parents={"a": "b"}),
    )
    assert selection.keyframes == ["a", "b", "d"]


def test_large_local_map_is_not_expanded():
    votes = {f"kf{i}": 1 for i in range(81)}
    selection = select_local_keyframes(votes, **graph(covisibles={"kf0": ["extra"]}))
    assert len(selection.keyframes) == len(votes)
    assert "extra" not in selection.keyframes


def test_collect_local_points_deduplicates_and_skips_bad():
    matches = {"a": ["p1", None, "p2", "bad"], "b": ["p2", "p3", "p1"]}
    points = collect_local_points(["a", "b"], lambda kf: matches[kf], lambda mp: mp == "bad")
    assert points == ["p1", "p2", "p3"]
    assert len(points) == len(set(points))


def test_collect_local_points_without_keyframes():
    assert collect_local_points([], lambda kf: [], lambda mp: False) == []