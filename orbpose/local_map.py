"""Selection of the local keyframes and map points tracked against a frame."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

_MAX_LOCAL_KEYFRAMES = 80
_N_BEST_COVISIBLES = 10


@dataclass
class LocalKeyFrameSelection:
    """Local keyframes in insertion order and the one sharing most points."""

    keyframes: list = field(default_factory=list)
    reference: Any = None


def count_keyframe_votes(observations):
    """Count, per keyframe, how many of the frame's map points it observes.

    ``observations`` yields, per map point, the keyframes observing it;
    ``None`` entries are skipped.  Keyframes keep first-seen order.
    """
    votes: Counter = Counter()
    for keyframes in observations:
        if keyframes is None:
            continue
        votes.update(keyframes)
    return dict(votes)


def _first_new(candidates, is_bad, included):
    for keyframe in candidates:
        if not is_bad(keyframe) and keyframe not in included:
            return keyframe
    return None


def select_local_keyframes(votes, is_bad, best_covisibles, children, parent):
    """Choose the local keyframes from observation ``votes``.

    Every good voting keyframe is included.  Then, for each of them and while
    there are at most 80, one new best covisible (``best_covisibles(kf, 10)``),
    one new child (``children(kf)``) and the parent (``parent(kf)``) are
    added; adding a parent ends the expansion.  Returns ``None`` when there
    are no votes.
    """
    if not votes:
        return None

    selection = LocalKeyFrameSelection()
    included = set()
    best_count = 0
    for keyframe, count in votes.items():
        if is_bad(keyframe):
            continue
        if count > best_count:
            best_count = count
            selection.reference = keyframe
        selection.keyframes.append(keyframe)
        included.add(keyframe)

    for keyframe in list(selection.keyframes):
        if len(selection.keyframes) > _MAX_LOCAL_KEYFRAMES:
            break

        for candidates in (best_covisibles(keyframe, _N_BEST_COVISIBLES), children(keyframe)):
            extra = _first_new(candidates, is_bad, included)
            if extra is not None:
                selection.keyframes.append(extra)
                included.add(extra)

        keyframe_parent = parent(keyframe)
        if keyframe_parent is not None and keyframe_parent not in included:
            selection.keyframes.append(keyframe_parent)
            included.add(keyframe_parent)
            break

    return selection


def collect_local_points(keyframes, point_matches, is_bad):
    """Gather the distinct good map points matched in ``keyframes``, in order."""
    points = []
    seen = set()
    for keyframe in keyframes:
        for map_point in point_matches(keyframe):
            if map_point is None or map_point in seen:
                continue
            if not is_bad(map_point):
                points.append(map_point)
                seen.add(map_point)
    return points