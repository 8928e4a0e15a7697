"""RANSAC camera pose estimation on top of EPnP."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass

import numpy as np

from orbpose.epnp import EPnP


@dataclass
class PnPResult:
    """Outcome of a batch of RANSAC iterations.

    ``inliers`` is indexed by keypoint and is empty when no pose was found.
    """

    transform: np.ndarray | None
    inliers: list[bool]
    n_inliers: int
    no_more: bool


def _to_transform(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    transform = np.eye(4)
    transform[:3, :3] = rotation
    transform[:3, 3] = translation
    return transform


class PnPRansac:
    """Estimate a camera pose from 3D-2D correspondences with RANSAC.

    ``points_world`` are map point positions, ``points_image`` the undistorted
    keypoints they were matched to and ``sigma2`` the keypoint level variances.
    ``keypoint_indices`` gives, for each correspondence, the index of its
    keypoint among ``n_keypoints``.
    """

    def __init__(self, points_world, points_image, sigma2, fu, fv, uc, vc,
                 keypoint_indices=None, n_keypoints=None, seed=None):
        pws = np.asarray(points_world, dtype=float)
        us = np.asarray(points_image, dtype=float)
        if pws.size == 0:
            pws = pws.reshape(0, 3)
        if us.size == 0:
            us = us.reshape(0, 2)
        if pws.ndim != 2 or pws.shape[1] != 3:
            raise ValueError("points_world must be an (N, 3) array")
        if us.ndim != 2 or us.shape[1] != 2:
            raise ValueError("points_image must be an (N, 2) array")
        if len(pws) != len(us):
            raise ValueError("points_world and points_image must have equal length")
        self.points_world = pws
        self.points_image = us
        self.n = len(pws)

        self.sigma2 = np.asarray(sigma2, dtype=float).reshape(-1)
        if len(self.sigma2) != self.n:
            raise ValueError("one sigma^2 per correspondence is required")

        self.fu, self.fv, self.uc, self.vc = float(fu), float(fv), float(uc), float(vc)
        self._epnp = EPnP(fu, fv, uc, vc)

        if keypoint_indices is None:
            keypoint_indices = range(self.n)
        self.keypoint_indices = [int(i) for i in keypoint_indices]
        if len(self.keypoint_indices) != self.n:
            raise ValueError("one keypoint index per correspondence is required")
        if n_keypoints is None:
            n_keypoints = max(self.keypoint_indices, default=-1) + 1
        self.n_keypoints = int(n_keypoints)
        if any(i < 0 or i >= self.n_keypoints for i in self.keypoint_indices):
            raise ValueError("keypoint index out of range")

        self._rng = random.Random(seed)

        self.iterations = 0
        self.best_transform: np.ndarray | None = None
        self.best_inliers = np.zeros(self.n, dtype=bool)
        self.best_inlier_count = 0
        self.refined_transform: np.ndarray | None = None
        self.refined_inliers = np.zeros(self.n, dtype=bool)
        self.refined_inlier_count = 0

        self.set_ransac_parameters()

    def set_ransac_parameters(self, probability=0.99, min_inliers=8, max_iterations=300,
                              min_set=4, epsilon=0.4, th2=5.991):
        """Set RANSAC parameters, adjusted to the number of correspondences."""
        if min_set < 4:
            raise ValueError("EPnP needs a minimal set of at least four points")
        self.probability = probability
        self.min_set = int(min_set)

        n = self.n
        n_min = max(int(n * epsilon), int(min_inliers), self.min_set)
        self.min_inliers = n_min

        if n > 0 and epsilon < n_min / n:
            epsilon = n_min / n
        self.epsilon = epsilon

        if n_min == n:
            n_iterations = 1
        elif 0.0 < epsilon < 1.0 and probability < 1.0:
            n_iterations = math.ceil(math.log(1 - probability) / math.log(1 - epsilon ** 3))
        else:
            n_iterations = int(max_iterations)

        self.max_iterations = max(1, min(n_iterations, int(max_iterations)))
        self.max_error = self.sigma2 * th2

    def _expand(self, mask: np.ndarray) -> list[bool]:
        flags = [False] * self.n_keypoints
        for i in np.flatnonzero(mask):
            flags[self.keypoint_indices[i]] = True
        return flags

    def _estimate(self, indices):
        try:
            rotation, translation, _ = self._epnp.compute_pose(
                self.points_world[indices], self.points_image[indices])
        except np.linalg.LinAlgError:
            return None
        return rotation, translation

    def _refine(self):
        indices = np.flatnonzero(self.best_inliers)
        if len(indices) < 4:
            return False
        estimate = self._estimate(indices)
        if estimate is None:
            return False
        rotation, translation = estimate
        mask, count = self.check_inliers(rotation, translation)
        self.refined_inliers = mask
        self.refined_inlier_count = count
        if count > self.min_inliers:
            self.refined_transform = _to_transform(rotation, translation)
            return True
        return False

    def iterate(self, n_iterations):
        """Run RANSAC iterations and return a :class:`PnPResult`."""
        if self.n < self.min_inliers:
            return PnPResult(None, [], 0, True)

        current = 0
        while self.iterations < self.max_iterations or current < n_iterations:
            current += 1
            self.iterations += 1

            sample = self._rng.sample(range(self.n), self.min_set)
            estimate = self._estimate(sample)
            if estimate is None:
                continue
            rotation, translation = estimate
            mask, count = self.check_inliers(rotation, translation)

            if count >= self.min_inliers:
                if count > self.best_inlier_count:
                    self.best_inliers = mask
                    self.best_inlier_count = count
                    self.best_transform = _to_transform(rotation, translation)

                if self._refine():
                    return PnPResult(self.refined_transform.copy(),
                                     self._expand(self.refined_inliers),
                                     self.refined_inlier_count, False)

        no_more = False
        if self.iterations >= self.max_iterations:
            no_more = True
            if self.best_inlier_count >= self.min_inliers and self.best_transform is not None:
                return PnPResult(self.best_transform.copy(),
                                 self._expand(self.best_inliers),
                                 self.best_inlier_count, True)
        return PnPResult(None, [], 0, no_more)

    def find(self):
        """Run RANSAC with the whole iteration budget."""
        return self.iterate(self.max_iterations)

    def check_inliers(self, rotation, translation):
        """Return the inlier mask and count of a pose."""
        r = np.asarray(rotation, dtype=float)
        t = np.asarray(translation, dtype=float).reshape(3)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            cam = self.points_world @ r.T + t
            inv_z = 1.0 / cam[:, 2]
            ue = self.uc + self.fu * cam[:, 0] * inv_z
            ve = self.vc + self.fv * cam[:, 1] * inv_z
            error2 = (self.points_image[:, 0] - ue) ** 2 + (self.points_image[:, 1] - ve) ** 2
            mask = error2 < self.max_error
        return mask, int(mask.sum())