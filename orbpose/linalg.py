"""Small dense linear-algebra helpers used by the pose solvers."""

from __future__ import annotations

import math

import numpy as np


def qr_solve(a, b):
    """Solve ``a @ x = b`` in the least-squares sense with Householder QR.

    ``a`` must have at least as many rows as columns.  The inputs are not
    modified.  Raises ``numpy.linalg.LinAlgError`` if a column is all zeros.
    """
    mat = np.array(a, dtype=float)
    rhs = np.array(b, dtype=float).reshape(-1)
    if mat.ndim != 2:
        raise ValueError("a must be a two-dimensional matrix")
    n_rows, n_cols = mat.shape
    if n_cols == 0 or n_rows < n_cols:
        raise ValueError("a must have at least as many rows as columns")
    if rhs.shape[0] != n_rows:
        raise ValueError("b must have one entry per row of a")

    a1 = np.empty(n_cols)
    a2 = np.empty(n_cols)

    for k in range(n_cols):
        column = mat[k:, k]
        eta = float(np.max(np.abs(column)))
        if eta == 0.0:
            raise np.linalg.LinAlgError("matrix is singular")
        column /= eta
        sigma = math.sqrt(float(column @ column))
        if column[0] < 0:
            sigma = -sigma
        column[0] += sigma
        a1[k] = sigma * column[0]
        a2[k] = -eta * sigma
        if k + 1 < n_cols:
            tau = (column @ mat[k:, k + 1:]) / a1[k]
            mat[k:, k + 1:] -= np.outer(column, tau)

    # b <- Q^T b
    for j in range(n_cols):
        reflector = mat[j:, j]
        tau = float(reflector @ rhs[j:]) / a1[j]
        rhs[j:] -= tau * reflector

    # x = R^-1 b
    x = np.empty(n_cols)
    for i in reversed(range(n_cols)):
        x[i] = (rhs[i] - mat[i, i + 1:] @ x[i + 1:]) / a2[i]
    return x


def mat_to_quat(rotation):
    """Convert a 3x3 rotation matrix to a unit quaternion ``[x, y, z, w]``."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    trace = r[0, 0] + r[1, 1] + r[2, 2]

    if trace > 0.0:
        q = np.array([
            r[1, 2] - r[2, 1],
            r[2, 0] - r[0, 2],
            r[0, 1] - r[1, 0],
            trace + 1.0,
        ])
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = np.array([
            1.0 + r[0, 0] - r[1, 1] - r[2, 2],
            r[1, 0] + r[0, 1],
            r[2, 0] + r[0, 2],
            r[1, 2] - r[2, 1],
        ])
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = np.array([
            r[1, 0] + r[0, 1],
            1.0 + r[1, 1] - r[0, 0] - r[2, 2],
            r[2, 1] + r[1, 2],
            r[2, 0] - r[0, 2],
        ])
        n4 = q[1]
    else:
        q = np.array([
            r[2, 0] + r[0, 2],
            r[2, 1] + r[1, 2],
            1.0 + r[2, 2] - r[0, 0] - r[1, 1],
            r[0, 1] - r[1, 0],
        ])
        n4 = q[2]

    return q * (0.5 / math.sqrt(n4))


def relative_error(rotation_true, translation_true, rotation_est, translation_est):
    """Return ``(rotation_error, translation_error)`` relative to the true pose."""
    q_true = mat_to_quat(rotation_true)
    q_est = mat_to_quat(rotation_est)
    norm_true = float(np.linalg.norm(q_true))

    rot_err1 = float(np.linalg.norm(q_true - q_est)) / norm_true
    rot_err2 = float(np.linalg.norm(q_true + q_est)) / norm_true
    rot_err = min(rot_err1, rot_err2)

    t_true = np.asarray(translation_true, dtype=float).reshape(3)
    t_est = np.asarray(translation_est, dtype=float).reshape(3)
    transl_err = float(np.linalg.norm(t_true - t_est)) / float(np.linalg.norm(t_true))
    return rot_err, transl_err