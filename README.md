# orbpose

Pose estimation building blocks for feature-based visual SLAM. The package is
built on numpy. It reads settings files with PyYAML.

## Modules

- `orbpose.epnp`: `EPnP(fu, fv, uc, vc)` computes a camera pose from four or
  more 3D-2D correspondences. It picks control points by PCA, works in
  barycentric coordinates and refines three beta approximations with
  Gauss-Newton. `compute_pose(points_world, points_image)` returns
  `(rotation, translation, mean_reprojection_error)`.
  `reprojection_error(...)` gives the mean pixel distance between the
  projected points and the observed ones.
- `orbpose.pnp_ransac`: `PnPRansac` runs EPnP on random minimal sets inside
  RANSAC and refines each good pose on its inliers. `iterate(n)` and `find()`
  return a `PnPResult` with fields `transform`, `inliers`, `n_inliers` and
  `no_more`. `set_ransac_parameters(...)` works out the iteration budget
  from the probability and the inlier ratio.
- `orbpose.sim3`: `compute_sim3(points1, points2, fix_scale)` gives a
  closed-form similarity `p1 = s R p2 + t` by Horn's quaternion method, as a
  `Sim3Estimate`. `Sim3Solver` runs RANSAC over matched points, checks
  reprojection in both images and returns a `Sim3Result`. `project` and
  `camera_to_image` project points to pixels.
- `orbpose.linalg`: `qr_solve` is a Householder QR least-squares solve.
  `mat_to_quat` converts a rotation matrix to a quaternion `[x, y, z, w]`.
  `relative_error` gives the rotation and translation errors of an estimate
  relative to the true pose.
- `orbpose.motion`: `pose_inverse`, and a constant-velocity `MotionModel`
  with `update`, `predict` and `reset`. `TrajectoryRecorder` keeps every
  frame's pose relative to its reference keyframe. A frame without a pose
  repeats the previous entry. `select_points_by_depth` picks the close
  points, nearest first, that should get new map points.
- `orbpose.relocalization`: `Relocalizer(optimize_pose, search_by_projection)`
  runs `PnPRansac` on each `RelocalizationCandidate` in turn, five iterations
  at a time. It refines the pose with the optimisation callable you supply
  and widens the matches with the search callable you supply. It stops once
  a pose has at least 50 good matches. `run(candidates)` returns a
  `RelocalizationOutcome`.
- `orbpose.local_map`: `count_keyframe_votes`, `select_local_keyframes`
  (which returns a `LocalKeyFrameSelection` with its reference keyframe) and
  `collect_local_points`.
- `orbpose.settings`: `Sensor` (`MONOCULAR`, `STEREO`, `RGBD`),
  `CameraSettings.from_mapping(mapping, sensor)` with `intrinsics()` and
  `distortion`, and `OrbSettings.from_mapping(mapping)`. `load_settings(path)`
  and `parse_settings_text(text)` read YAML settings. They accept a leading
  `%YAML:1.0` line and `!!opencv-matrix` nodes.
- `orbpose.viewer_state`: `ViewerSettings.from_mapping(mapping)` and
  `ViewerState`, the thread-safe stop/finish handshake of a viewer loop
  (`start`, `request_stop`, `stop`, `release`, `request_finish`,
  `check_finish`, `set_finish`, `is_finished`, `is_stopped`).
- `orbpose.trajectory`: `KeyFramePoseRecord`, `FramePoseRecord`,
  `MapChangeMonitor`, `rotation_to_quaternion`, `camera_to_world`,
  `format_tum_line`, `format_kitti_line`, `save_trajectory_tum`,
  `save_keyframe_trajectory_tum` and `save_trajectory_kitti`. The two
  frame-trajectory writers raise `ValueError` for a monocular sensor.

## Example

```python
import numpy as np
from orbpose.epnp import EPnP

rng = np.random.default_rng(0)
world = rng.uniform([-1, -1, 4], [1, 1, 6], size=(20, 3))
image = np.column_stack([
    320.0 + 500.0 * world[:, 0] / world[:, 2],
    240.0 + 500.0 * world[:, 1] / world[:, 2],
])
solver = EPnP(fu=500.0, fv=500.0, uc=320.0, vc=240.0)
rotation, translation, error = solver.compute_pose(world, image)
```

Saving a keyframe trajectory:

```python
import numpy as np
from orbpose.trajectory import KeyFramePoseRecord, save_keyframe_trajectory_tum

keyframes = [
    KeyFramePoseRecord(id=0, timestamp=0.0, pose=np.eye(4)),
    KeyFramePoseRecord(id=1, timestamp=0.1, pose=np.eye(4)),
]
save_keyframe_trajectory_tum("KeyFrameTrajectory.txt", keyframes)
```

## What it does not do

orbpose is a library of parts, not a running SLAM system. It does not
extract or match features. It keeps no map or keyframe database and does no
bundle adjustment or pose-graph optimisation. The relocalizer gets these
through the callables you pass to it. It opens no viewer window:
`ViewerState` only holds the flags a viewer loop would use. It has no
command-line program, and it does not decide when to insert a new keyframe.

## Installing and testing

```
pip install .
pip install ".[test]"
pytest
```