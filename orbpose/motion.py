"""Constant-velocity motion model and per-frame trajectory bookkeeping."""

from __future__ import annotations

import numpy as np

# Below this many selected points, far points are still accepted.
_MIN_CLOSE_POINTS = 100


def pose_inverse(pose):
    """Invert a 4x4 rigid transform."""
    t = np.asarray(pose, dtype=float)
    if t.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")
    rotation_t = t[:3, :3].T
    inverse = np.eye(4)
    inverse[:3, :3] = rotation_t
    inverse[:3, 3] = -rotation_t @ t[:3, 3]
    return inverse


class MotionModel:
    """Predicts the next camera pose from the last inter-frame motion."""

    def __init__(self):
        self.velocity: np.ndarray | None = None

    @property
    def has_velocity(self) -> bool:
        return self.velocity is not None

    def update(self, current_pose, last_pose):
        """Set the velocity to ``current_pose @ inverse(last_pose)``.

        A missing ``last_pose`` clears the velocity.
        """
        if last_pose is None:
            self.velocity = None
        else:
            self.velocity = np.asarray(current_pose, dtype=float) @ pose_inverse(last_pose)
        return self.velocity

    def predict(self, last_pose):
        """Predict the current pose by applying the velocity to ``last_pose``."""
        if self.velocity is None:
            raise ValueError("motion model has no velocity yet")
        return self.velocity @ np.asarray(last_pose, dtype=float)

    def reset(self):
        self.velocity = None


class TrajectoryRecorder:
    """Stores every frame's pose relative to its reference keyframe."""

    def __init__(self):
        self.relative_poses: list[np.ndarray] = []
        self.references: list = []
        self.timestamps: list[float] = []
        self.lost: list[bool] = []

    def __len__(self):
        return len(self.relative_poses)

    def __iter__(self):
        return iter(zip(self.relative_poses, self.references, self.timestamps, self.lost))

    def record(self, pose, reference_pose, reference, timestamp, lost):
        """Record one frame; a frame without a pose repeats the previous entry."""
        if pose is not None:
            relative = np.asarray(pose, dtype=float) @ pose_inverse(reference_pose)
            self.relative_poses.append(relative)
            self.references.append(reference)
            self.timestamps.append(float(timestamp))
        else:
            if not self.relative_poses:
                raise ValueError("no previous frame to repeat for a frame without pose")
            self.relative_poses.append(self.relative_poses[-1])
            self.references.append(self.references[-1])
            self.timestamps.append(self.timestamps[-1])
        self.lost.append(bool(lost))

    def clear(self):
        self.relative_poses.clear()
        self.references.clear()
        self.timestamps.clear()
        self.lost.clear()


def select_points_by_depth(depths, needs_new_point, th_depth):
    """Return indices, closest first, of points that get a new map point.

    Points with positive depth are visited by increasing depth.  All close
    points are taken; once a far point is reached and more than 100 points
    have been visited, the selection stops.  ``needs_new_point`` holds one
    flag per point telling whether it lacks a usable map point.
    """
    depth_idx = sorted((float(z), i) for i, z in enumerate(depths) if z > 0)
    selected = []
    n_points = 0
    for z, i in depth_idx:
        if needs_new_point[i]:
            selected.append(i)
        n_points += 1
        if z > th_depth and n_points > _MIN_CLOSE_POINTS:
            break
    return selected