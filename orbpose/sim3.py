"""Similarity transform estimation between two sets of 3D points with RANSAC."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass

import numpy as np

# Chi-square value at 99% for two degrees of freedom; multiply by a keypoint's
# level sigma^2 to get its maximum squared reprojection error.
CHI2_2DOF = 9.210


@dataclass(frozen=True)
class Sim3Estimate:
    """A similarity transform mapping frame 2 points into frame 1."""

    rotation: np.ndarray
    translation: np.ndarray
    scale: float
    t12: np.ndarray
    t21: np.ndarray


@dataclass
class Sim3Result:
    """Outcome of a batch of RANSAC iterations."""

    transform: np.ndarray | None
    inliers: list[bool]
    n_inliers: int
    no_more: bool


def _as_points(points) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return arr.reshape(0, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError("points must be an (N, 3) array")
    return arr


def _quaternion_rotation(q: np.ndarray) -> np.ndarray:
    vec = q[1:4]
    sin_half = float(np.linalg.norm(vec))
    if sin_half == 0.0:
        return np.eye(3)
    theta = 2.0 * math.atan2(sin_half, float(q[0]))
    axis = vec / sin_half
    skew = np.array([
        [0.0, -axis[2], axis[1]],
        [axis[2], 0.0, -axis[0]],
        [-axis[1], axis[0], 0.0],
    ])
    return np.eye(3) + math.sin(theta) * skew + (1.0 - math.cos(theta)) * (skew @ skew)


def compute_sim3(points1, points2, fix_scale):
    """Closed-form similarity (Horn's quaternion method) with ``p1 = s R p2 + t``."""
    p1 = _as_points(points1)
    p2 = _as_points(points2)
    if p1.shape != p2.shape or len(p1) == 0:
        raise ValueError("point sets must be non-empty and of equal size")

    o1 = p1.mean(axis=0)
    o2 = p2.mean(axis=0)
    pr1 = p1 - o1
    pr2 = p2 - o2

    m = pr2.T @ pr1
    n = np.array([
        [m[0, 0] + m[1, 1] + m[2, 2], m[1, 2] - m[2, 1], m[2, 0] - m[0, 2], m[0, 1] - m[1, 0]],
        [m[1, 2] - m[2, 1], m[0, 0] - m[1, 1] - m[2, 2], m[0, 1] + m[1, 0], m[2, 0] + m[0, 2]],
        [m[2, 0] - m[0, 2], m[0, 1] + m[1, 0], -m[0, 0] + m[1, 1] - m[2, 2], m[1, 2] + m[2, 1]],
        [m[0, 1] - m[1, 0], m[2, 0] + m[0, 2], m[1, 2] + m[2, 1], -m[0, 0] - m[1, 1] + m[2, 2]],
    ])

    _, eigenvectors = np.linalg.eigh(n)
    rotation = _quaternion_rotation(eigenvectors[:, -1])

    p3 = pr2 @ rotation.T
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        if fix_scale:
            scale = np.float64(1.0)
        else:
            scale = np.sum(pr1 * p3) / np.sum(p3 * p3)

        translation = o1 - scale * (rotation @ o2)

        t12 = np.eye(4)
        t12[:3, :3] = scale * rotation
        t12[:3, 3] = translation

        s_inv = rotation.T / scale
        t21 = np.eye(4)
        t21[:3, :3] = s_inv
        t21[:3, 3] = -s_inv @ translation

    return Sim3Estimate(rotation, translation, float(scale), t12, t21)


def camera_to_image(points, intrinsics):
    """Project camera-frame points to pixel coordinates with a 3x3 calibration."""
    pts = _as_points(points)
    k = np.asarray(intrinsics, dtype=float)
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        inv_z = 1.0 / pts[:, 2]
        u = fx * pts[:, 0] * inv_z + cx
        v = fy * pts[:, 1] * inv_z + cy
    return np.column_stack([u, v])


def project(points, transform, intrinsics):
    """Transform points by a 4x4 matrix and project them to pixels."""
    pts = _as_points(points)
    t = np.asarray(transform, dtype=float)
    with np.errstate(invalid="ignore", over="ignore"):
        camera = pts @ t[:3, :3].T + t[:3, 3]
    return camera_to_image(camera, intrinsics)


class Sim3Solver:
    """RANSAC estimation of a similarity between two keyframes' matched points.

    ``points1`` and ``points2`` are the matched points expressed in the camera
    frames of keyframe 1 and 2.  ``max_error1``/``max_error2`` are the squared
    pixel thresholds per correspondence.  ``match_indices`` gives, for each
    correspondence, its position among the ``n_matches`` original matches.
    """

    def __init__(self, points1, points2, max_error1, max_error2, intrinsics1,
                 intrinsics2, match_indices=None, n_matches=None, fix_scale=True,
                 seed=None):
        self.points1 = _as_points(points1)
        self.points2 = _as_points(points2)
        if self.points1.shape != self.points2.shape:
            raise ValueError("point sets must be of equal size")
        self.n = len(self.points1)

        self.max_error1 = np.asarray(max_error1, dtype=float).reshape(-1)
        self.max_error2 = np.asarray(max_error2, dtype=float).reshape(-1)
        if len(self.max_error1) != self.n or len(self.max_error2) != self.n:
            raise ValueError("one maximum error per correspondence is required")

        self.intrinsics1 = np.asarray(intrinsics1, dtype=float)
        self.intrinsics2 = np.asarray(intrinsics2, dtype=float)

        if match_indices is None:
            match_indices = range(self.n)
        self.match_indices = [int(i) for i in match_indices]
        if len(self.match_indices) != self.n:
            raise ValueError("one match index per correspondence is required")
        if n_matches is None:
            n_matches = max(self.match_indices, default=-1) + 1
        self.n_matches = int(n_matches)
        if any(i < 0 or i >= self.n_matches for i in self.match_indices):
            raise ValueError("match index out of range")

        self.fix_scale = bool(fix_scale)
        self._rng = random.Random(seed)

        self.image1 = camera_to_image(self.points1, self.intrinsics1)
        self.image2 = camera_to_image(self.points2, self.intrinsics2)

        self.best: Sim3Estimate | None = None
        self.best_inliers = np.zeros(self.n, dtype=bool)
        self.best_inlier_count = 0
        self.iterations = 0

        self.set_ransac_parameters()

    def set_ransac_parameters(self, probability=0.99, min_inliers=6, max_iterations=300):
        """Set RANSAC parameters and derive the iteration budget."""
        self.probability = probability
        self.min_inliers = int(min_inliers)

        if self.min_inliers == self.n:
            n_iterations = 1
        else:
            epsilon = self.min_inliers / self.n if self.n else 0.0
            if 0.0 < epsilon < 1.0 and probability < 1.0:
                n_iterations = math.ceil(math.log(1 - probability) / math.log(1 - epsilon ** 3))
            else:
                n_iterations = max_iterations

        self.max_iterations = max(1, min(n_iterations, int(max_iterations)))
        self.iterations = 0

    def iterate(self, n_iterations):
        """Run up to ``n_iterations`` RANSAC iterations."""
        inliers = [False] * self.n_matches

        if self.n < self.min_inliers or self.n < 3:
            return Sim3Result(None, inliers, 0, True)

        current = 0
        while self.iterations < self.max_iterations and current < n_iterations:
            current += 1
            self.iterations += 1

            sample = self._rng.sample(range(self.n), 3)
            estimate = compute_sim3(self.points1[sample], self.points2[sample], self.fix_scale)
            mask, count = self.check_inliers(estimate)

            if count >= self.best_inlier_count:
                self.best = estimate
                self.best_inliers = mask
                self.best_inlier_count = count

                if count > self.min_inliers:
                    for i in np.flatnonzero(mask):
                        inliers[self.match_indices[i]] = True
                    return Sim3Result(estimate.t12.copy(), inliers, count, False)

        return Sim3Result(None, inliers, 0, self.iterations >= self.max_iterations)

    def find(self):
        """Run RANSAC with the whole iteration budget."""
        return self.iterate(self.max_iterations)

    def check_inliers(self, estimate):
        """Return the inlier mask and count for ``estimate``."""
        with np.errstate(invalid="ignore", over="ignore"):
            p2_in_1 = project(self.points2, estimate.t12, self.intrinsics1)
            p1_in_2 = project(self.points1, estimate.t21, self.intrinsics2)
            err1 = np.sum((self.image1 - p2_in_1) ** 2, axis=1)
            err2 = np.sum((p1_in_2 - self.image2) ** 2, axis=1)
            mask = (err1 < self.max_error1) & (err2 < self.max_error2)
        return mask, int(mask.sum())