"""Export of camera and keyframe trajectories in TUM and KITTI text formats."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from orbpose.settings import Sensor

_TIMESTAMP_PRECISION = 6
_FRAME_PRECISION = 9
_KEYFRAME_PRECISION = 7


@dataclass(eq=False)
class KeyFramePoseRecord:
    """A keyframe's identifier, timestamp and world-to-camera pose.

    A culled (``bad``) keyframe keeps its ``parent`` in the spanning tree and
    its pose relative to it, ``relative_to_parent``.
    """

    id: int
    timestamp: float
    pose: np.ndarray
    bad: bool = False
    parent: KeyFramePoseRecord | None = None
    relative_to_parent: np.ndarray | None = None


@dataclass
class FramePoseRecord:
    """A frame's pose relative to its reference keyframe."""

    relative_pose: np.ndarray
    reference: KeyFramePoseRecord
    timestamp: float
    lost: bool = False


class MapChangeMonitor:
    """Reports whether the map had a big change since the previous query."""

    def __init__(self):
        self._last_seen = 0

    def changed(self, last_big_change_idx):
        """Return True once for every increase of the map's big-change index."""
        current = int(last_big_change_idx)
        if self._last_seen < current:
            self._last_seen = current
            return True
        return False


def rotation_to_quaternion(rotation):
    """Convert a 3x3 rotation matrix to a unit quaternion ``[x, y, z, w]``."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    q = np.zeros(4)
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    if trace > 0:
        t = math.sqrt(trace + 1.0)
        q[3] = 0.5 * t
        t = 0.5 / t
        q[0] = (r[2, 1] - r[1, 2]) * t
        q[1] = (r[0, 2] - r[2, 0]) * t
        q[2] = (r[1, 0] - r[0, 1]) * t
    else:
        i = 0
        if r[1, 1] > r[0, 0]:
            i = 1
        if r[2, 2] > r[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(r[i, i] - r[j, j] - r[k, k] + 1.0)
        q[i] = 0.5 * t
        t = 0.5 / t
        q[3] = (r[k, j] - r[j, k]) * t
        q[j] = (r[j, i] + r[i, j]) * t
        q[k] = (r[k, i] + r[i, k]) * t
    return q


def camera_to_world(pose):
    """Return ``(rotation_wc, center)`` of a 4x4 world-to-camera pose."""
    t = np.asarray(pose, dtype=float)
    if t.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")
    rotation_wc = t[:3, :3].T
    center = -rotation_wc @ t[:3, 3]
    return rotation_wc, center


def format_tum_line(timestamp, center, quaternion, precision):
    """Format ``timestamp tx ty tz qx qy qz qw`` with fixed-point numbers."""
    values = [float(v) for v in np.asarray(center, dtype=float).reshape(3)]
    values += [float(v) for v in np.asarray(quaternion, dtype=float).reshape(4)]
    body = " ".join(f"{v:.{precision}f}" for v in values)
    return f"{float(timestamp):.{_TIMESTAMP_PRECISION}f} {body}"


def format_kitti_line(rotation, center):
    """Format the 3x4 matrix ``[R | t]`` row by row on one line."""
    r = np.asarray(rotation, dtype=float).reshape(3, 3)
    t = np.asarray(center, dtype=float).reshape(3)
    values = []
    for row in range(3):
        values.extend(float(v) for v in r[row])
        values.append(float(t[row]))
    return " ".join(f"{v:.{_FRAME_PRECISION}f}" for v in values)


def _frame_pose(record: FramePoseRecord, origin_inverse: np.ndarray) -> np.ndarray:
    """World-to-camera pose of a frame, following culled keyframes to their parents."""
    trw = np.eye(4)
    keyframe = record.reference
    while keyframe.bad:
        if keyframe.parent is None or keyframe.relative_to_parent is None:
            raise ValueError(f"culled keyframe {keyframe.id} has no parent to fall back on")
        trw = trw @ np.asarray(keyframe.relative_to_parent, dtype=float)
        keyframe = keyframe.parent
    trw = trw @ np.asarray(keyframe.pose, dtype=float) @ origin_inverse
    return np.asarray(record.relative_pose, dtype=float) @ trw


def _check_not_monocular(sensor, name):
    if Sensor(sensor) is Sensor.MONOCULAR:
        raise ValueError(f"{name} cannot be used for monocular")


def _write_lines(filename, lines):
    with Path(filename).open("w", encoding="utf-8") as handle:
        for line in lines:
            handle.write(line + "\n")


def save_trajectory_tum(filename, records, origin_inverse, sensor):
    """Write every tracked frame's camera pose in TUM format; lost frames are skipped."""
    _check_not_monocular(sensor, "save_trajectory_tum")
    origin = np.asarray(origin_inverse, dtype=float)
    lines = []
    for record in records:
        if record.lost:
            continue
        rotation_wc, center = camera_to_world(_frame_pose(record, origin))
        quaternion = rotation_to_quaternion(rotation_wc)
        lines.append(format_tum_line(record.timestamp, center, quaternion, _FRAME_PRECISION))
    _write_lines(filename, lines)


def save_keyframe_trajectory_tum(filename, keyframes):
    """Write the poses of all good keyframes, ordered by id, in TUM format."""
    lines = []
    for keyframe in sorted(keyframes, key=lambda kf: kf.id):
        if keyframe.bad:
            continue
        rotation_wc, center = camera_to_world(keyframe.pose)
        quaternion = rotation_to_quaternion(rotation_wc)
        lines.append(format_tum_line(keyframe.timestamp, center, quaternion,
                                     _KEYFRAME_PRECISION))
    _write_lines(filename, lines)


def save_trajectory_kitti(filename, records, origin_inverse, sensor):
    """Write every frame's camera pose as a 3x4 matrix per line (KITTI format)."""
    _check_not_monocular(sensor, "save_trajectory_kitti")
    origin = np.asarray(origin_inverse, dtype=float)
    lines = []
    for record in records:
        rotation_wc, center = camera_to_world(_frame_pose(record, origin))
        lines.append(format_kitti_line(rotation_wc, center))
    _write_lines(filename, lines)