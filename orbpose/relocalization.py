"""Camera relocalization against keyframe candidates with PnP RANSAC."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np

from orbpose.pnp_ransac import PnPRansac

_MIN_BOW_MATCHES = 15
_RANSAC_ITERATIONS = 5
_MIN_GOOD = 10
_ENOUGH_GOOD = 50
_RETRY_GOOD = 30
_COARSE_SEARCH = (10, 100)
_FINE_SEARCH = (3, 64)


@dataclass
class RelocalizationCandidate:
    """A keyframe proposed for relocalization with its per-keypoint matches."""

    keyframe: Any
    matches: list
    solver: PnPRansac | None = None
    bad: bool = False

    @property
    def n_matches(self) -> int:
        return sum(1 for mp in self.matches if mp is not None)


@dataclass
class RelocalizationOutcome:
    """Result of a relocalization attempt."""

    success: bool
    pose: np.ndarray | None = None
    map_points: list = field(default_factory=list)
    outliers: list[bool] = field(default_factory=list)
    keyframe: Any = None


class Relocalizer:
    """Runs interleaved RANSAC over candidates until a pose is well supported.

    ``optimize_pose(pose, map_points)`` returns ``(pose, outliers)`` for the
    current per-keypoint map points.  ``search_by_projection(pose, map_points,
    keyframe, already_found, threshold, orb_dist)`` returns a mapping from
    keypoint index to newly matched map point.
    """

    def __init__(self, optimize_pose: Callable, search_by_projection: Callable):
        self.optimize_pose = optimize_pose
        self.search_by_projection = search_by_projection

    def _optimize(self, pose, map_points):
        pose, outliers = self.optimize_pose(pose, map_points)
        outliers = [bool(o) for o in outliers]
        n_good = sum(1 for mp, out in zip(map_points, outliers) if mp is not None and not out)
        return pose, outliers, n_good

    def _search(self, pose, map_points, keyframe, found, params):
        threshold, orb_dist = params
        additions = self.search_by_projection(pose, map_points, keyframe, found,
                                              threshold, orb_dist)
        for index, map_point in additions.items():
            map_points[index] = map_point
        return len(additions)

    @staticmethod
    def _drop_outliers(map_points, outliers):
        for i, out in enumerate(outliers):
            if out:
                map_points[i] = None

    def run(self, candidates):
        """Try to relocalize against ``candidates``."""
        candidates = list(candidates)
        if not candidates:
            return RelocalizationOutcome(False)

        discarded = []
        for candidate in candidates:
            if candidate.bad or candidate.n_matches < _MIN_BOW_MATCHES:
                discarded.append(True)
                continue
            if candidate.solver is None:
                raise ValueError("a candidate with enough matches needs a solver")
            discarded.append(False)
        n_candidates = discarded.count(False)

        pose = None
        map_points: list = []
        outliers: list[bool] = []

        while n_candidates > 0:
            for i, candidate in enumerate(candidates):
                if discarded[i]:
                    continue

                result = candidate.solver.iterate(_RANSAC_ITERATIONS)
                if result.no_more:
                    discarded[i] = True
                    n_candidates -= 1

                if result.transform is None:
                    continue

                pose = result.transform.copy()
                map_points = [mp if inlier else None
                              for mp, inlier in zip(candidate.matches, result.inliers)]
                found = {mp for mp in map_points if mp is not None}

                pose, outliers, n_good = self._optimize(pose, map_points)
                if n_good < _MIN_GOOD:
                    continue
                self._drop_outliers(map_points, outliers)

                if n_good < _ENOUGH_GOOD:
                    additional = self._search(pose, map_points, candidate.keyframe,
                                              found, _COARSE_SEARCH)
                    if additional + n_good >= _ENOUGH_GOOD:
                        pose, outliers, n_good = self._optimize(pose, map_points)

                        if _RETRY_GOOD < n_good < _ENOUGH_GOOD:
                            found = {mp for mp in map_points if mp is not None}
                            additional = self._search(pose, map_points, candidate.keyframe,
                                                      found, _FINE_SEARCH)
                            if n_good + additional >= _ENOUGH_GOOD:
                                pose, outliers, n_good = self._optimize(pose, map_points)
                                self._drop_outliers(map_points, outliers)

                if n_good >= _ENOUGH_GOOD:
                    return RelocalizationOutcome(True, pose, map_points, outliers,
                                                 candidate.keyframe)

        return RelocalizationOutcome(False, pose, map_points, outliers)