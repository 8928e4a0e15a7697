import math

import numpy as np
import pytest

from orbpose.linalg import mat_to_quat, qr_solve, relative_error


def _rot_z(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def test_qr_solve_square_system_matches_direct_solve():
    a = np.array([[4.0, 1.0, 2.0], [1.0, 5.0, 3.0], [2.0, 3.0, 6.0]])
    b = np.array([1.0, -2.0, 3.0])
    x = qr_solve(a, b)
    assert np.allclose(x, np.linalg.solve(a, b))


def test_qr_solve_overdetermined_matches_least_squares():
    rng = np.random.default_rng(3)
    a = rng.normal(size=(6, 4))
    b = rng.normal(size=6)
    x = qr_solve(a, b)
    expected, *_ = np.linalg.lstsq(a, b, rcond=None)
    assert np.allclose(x, expected)


def test_qr_solve_does_not_modify_inputs():
    a = np.array([[2.0, 1.0], [1.0, 3.0], [0.5, 0.5]])
    b = np.array([1.0, 2.0, 3.0])
    a_copy, b_copy = a.copy(), b.copy()
    qr_solve(a, b)
    assert np.array_equal(a, a_copy)
    assert np.array_equal(b, b_copy)


def test_qr_solve_singular_column_raises():
    a = np.array([[1.0, 0.0], [2.0, 0.0], [3.0, 0.0]])
    with pytest.raises(np.linalg.LinAlgError):
        qr_solve(a, [1.0, 2.0, 3.0])


def test_qr_solve_rejects_wide_matrix():
    with pytest.raises(ValueError):
        qr_solve(np.ones((2, 3)), [1.0, 2.0])


def test_mat_to_quat_identity():
    assert np.allclose(mat_to_quat(np.eye(3)), [0.0, 0.0, 0.0, 1.0])


@pytest.mark.parametrize(
    "rotation, axis",
    [
        (np.diag([1.0, -1.0, -1.0]), 0),
        (np.diag([-1.0, 1.0, -1.0]), 1),
        (np.diag([-1.0, -1.0, 1.0]), 2),
    ],
)
def test_mat_to_quat_half_turns_use_each_branch(rotation, axis):
    q = mat_to_quat(rotation)
    assert math.isclose(float(np.linalg.norm(q)), 1.0)
    assert int(np.argmax(np.abs(q))) == axis


@pytest.mark.parametrize("angle", [0.1, 1.0, 2.5, -0.7])
def test_mat_to_quat_is_unit(angle):
    q = mat_to_quat(_rot_z(angle))
    assert math.isclose(float(np.linalg.norm(q)), 1.0)


def test_relative_error_identical_pose_is_zero():
    r = _rot_z(0.4)
    rot_err, transl_err = relative_error(r, [1.0, 2.0, 3.0], r, [1.0, 2.0, 3.0])
    assert rot_err == pytest.approx(0.0, abs=1e-12)
    assert transl_err == pytest.approx(0.0, abs=1e-12)


def test_relative_error_translation():
    r = np.eye(3)
    _, transl_err = relative_error(r, [0.0, 0.0, 2.0], r, [0.0, 0.0, 3.0])
    assert transl_err == pytest.approx(0.5)


def test_relative_error_grows_with_rotation_difference():
    small, _ = relative_error(np.eye(3), [1.0, 0.0, 0.0], _rot_z(0.1), [1.0, 0.0, 0.0])
    large, _ = relative_error(np.eye(3), [1.0, 0.0, 0.0], _rot_z(0.8), [1.0, 0.0, 0.0])
    assert 0.0 < small < large