import math

import numpy as np
import pytest

from orbpose.sim3 import (
    CHI2_2DOF,
    Sim3Solver,
    camera_to_image,
    compute_sim3,
    project,
)

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def _rot_y(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def _scene(n=20, scale=1.5, seed=1):
    rng = np.random.default_rng(seed)
    rotation = _rot_y(0.17)
    translation = np.array([0.1, -0.2, 0.3])
    points2 = np.column_stack([
        rng.uniform(-1.0, 1.0, n),
        rng.uniform(-1.0, 1.0, n),
        rng.uniform(4.0, 8.0, n),
    ])
    points1 = scale * points2 @ rotation.T + translation
    return points1, points2, rotation, translation, scale


def test_compute_sim3_recovers_similarity():
    points1, points2, rotation, translation, scale = _scene()
    est = compute_sim3(points1, points2, fix_scale=False)
    assert np.allclose(est.rotation, rotation, atol=1e-8)
    assert est.scale == pytest.approx(scale)
    assert np.allclose(est.translation, translation, atol=1e-8)


def test_compute_sim3_fixed_scale_is_one():
    points1, points2, rotation, translation, _ = _scene(scale=1.0)
    est = compute_sim3(points1, points2, fix_scale=True)
    assert est.scale == 1.0
    assert np.allclose(est.rotation, rotation, atol=1e-8)
    assert np.allclose(est.translation, translation, atol=1e-8)


def test_compute_sim3_inverse_transforms_compose_to_identity():
    points1, points2, *_ = _scene()
    est = compute_sim3(points1, points2, fix_scale=False)
    assert np.allclose(est.t21 @ est.t12, np.eye(4), atol=1e-10)


def test_compute_sim3_rejects_mismatched_sets():
    with pytest.raises(ValueError):
        compute_sim3(np.zeros((3, 3)), np.zeros((4, 3)), fix_scale=True)


def test_camera_to_image_principal_point():
    uv = camera_to_image([[0.0, 0.0, 2.0]], K)
    assert np.allclose(uv, [[320.0, 240.0]])


def test_project_with_identity_matches_camera_to_image():
    points1, *_ = _scene()
    assert np.allclose(project(points1, np.eye(4), K), camera_to_image(points1, K))


def test_project_with_t12_lands_on_frame1_projections():
    points1, points2, *_ = _scene()
    est = compute_sim3(points1, points2, fix_scale=False)
    assert np.allclose(project(points2, est.t12, K), camera_to_image(points1, K), atol=1e-6)


def _solver(points1, points2, **kwargs):
    n = len(points1)
    errors = np.full(n, CHI2_2DOF)
    return Sim3Solver(points1, points2, errors, errors, K, K, **kwargs)


def test_solver_finds_transform_and_flags_outliers():
    points1, points2, rotation, translation, scale = _scene()
    outliers = [3, 9, 15]
    points1 = points1.copy()
    points1[outliers] += np.array([0.5, 0.5, 0.0])
    n = len(points1)
    solver = _solver(
        points1, points2,
        match_indices=[2 * i for i in range(n)], n_matches=2 * n,
        fix_scale=False, seed=7,
    )
    solver.set_ransac_parameters(0.99, 12, 300)
    result = solver.find()

    expected = np.eye(4)
    expected[:3, :3] = scale * rotation
    expected[:3, 3] = translation
    assert result.transform is not None
    assert np.allclose(result.transform, expected, atol=1e-6)
    assert result.n_inliers == n - len(outliers)
    assert len(result.inliers) == 2 * n
    for i in range(n):
        assert result.inliers[2 * i] == (i not in outliers)
        assert result.inliers[2 * i + 1] is False
    assert solver.best.scale == pytest.approx(scale)


def test_solver_too_few_correspondences():
    points1, points2, *_ = _scene(n=4)
    result = _solver(points1, points2, seed=0).find()
    assert result.transform is None
    assert result.no_more is True
    assert result.n_inliers == 0
    assert result.inliers == [False] * 4


def test_iteration_budget_when_min_inliers_equals_n():
    points1, points2, *_ = _scene(n=6)
    solver = _solver(points1, points2, seed=0)
    assert solver.max_iterations == 1


def test_iteration_budget_capped_by_max_iterations():
    points1, points2, *_ = _scene(n=100)
    solver = _solver(points1, points2, seed=0)
    assert solver.max_iterations == 300
    solver.set_ransac_parameters(0.99, 6, 50)
    assert solver.max_iterations == 50


def test_check_inliers_all_true_for_exact_estimate():
    points1, points2, *_ = _scene(n=10, scale=1.0)
    solver = _solver(points1, points2, seed=0)
    mask, count = solver.check_inliers(compute_sim3(points1, points2, fix_scale=True))
    assert count == 10
    assert mask.all()


def test_solver_rejects_bad_match_index():
    points1, points2, *_ = _scene(n=5)
    with pytest.raises(ValueError):
        _solver(points1, points2, match_indices=[0, 1, 2, 3, 9], n_matches=5)