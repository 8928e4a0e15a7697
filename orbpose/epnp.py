"""Efficient Perspective-n-Point pose estimation from 3D-2D correspondences."""

from __future__ import annotations

import numpy as np

from orbpose.linalg import qr_solve

_GAUSS_NEWTON_ITERATIONS = 5

# Pairs of control points, in the order the distance constraints are built.
_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))


def _compute_l_6x10(ut: np.ndarray) -> np.ndarray:
    """Build the 6x10 matrix relating products of betas to control distances."""
    kernel = [ut[11 - i].reshape(4, 3) for i in range(4)]
    dv = np.array([[v[a] - v[b] for a, b in _PAIRS] for v in kernel])  # (4, 6, 3)

    def dot(i, j):
        return np.einsum("kc,kc->k", dv[i], dv[j])

    return np.column_stack([
        dot(0, 0),
        2.0 * dot(0, 1),
        dot(1, 1),
        2.0 * dot(0, 2),
        2.0 * dot(1, 2),
        dot(2, 2),
        2.0 * dot(0, 3),
        2.0 * dot(1, 3),
        2.0 * dot(2, 3),
        dot(3, 3),
    ])


def _compute_rho(cws: np.ndarray) -> np.ndarray:
    return np.array([float(np.sum((cws[a] - cws[b]) ** 2)) for a, b in _PAIRS])


def _solve(mat: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    return np.linalg.lstsq(mat, rhs, rcond=None)[0]


def _betas_approx_1(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    # betas10 = [B11 B12 B22 B13 B23 B33 B14 B24 B34 B44]; uses B11 B12 B13 B14
    b4 = _solve(l_6x10[:, [0, 1, 3, 6]], rho)
    betas = np.zeros(4)
    if b4[0] < 0:
        betas[0] = np.sqrt(-b4[0])
        betas[1:] = -b4[1:] / betas[0]
    else:
        betas[0] = np.sqrt(b4[0])
        betas[1:] = b4[1:] / betas[0]
    return betas


def _betas_approx_2(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    # Uses B11 B12 B22
    b3 = _solve(l_6x10[:, :3], rho)
    betas = np.zeros(4)
    if b3[0] < 0:
        betas[0] = np.sqrt(-b3[0])
        betas[1] = np.sqrt(-b3[2]) if b3[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b3[0])
        betas[1] = np.sqrt(b3[2]) if b3[2] > 0 else 0.0
    if b3[1] < 0:
        betas[0] = -betas[0]
    return betas


def _betas_approx_3(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    # Uses B11 B12 B22 B13 B23
    b5 = _solve(l_6x10[:, :5], rho)
    betas = np.zeros(4)
    if b5[0] < 0:
        betas[0] = np.sqrt(-b5[0])
        betas[1] = np.sqrt(-b5[2]) if b5[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b5[0])
        betas[1] = np.sqrt(b5[2]) if b5[2] > 0 else 0.0
    if b5[1] < 0:
        betas[0] = -betas[0]
    betas[2] = b5[3] / betas[0]
    return betas


def _gauss_newton(l_6x10: np.ndarray, rho: np.ndarray, betas: np.ndarray) -> np.ndarray:
    betas = betas.copy()
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        b0, b1, b2, b3 = betas
        jac = np.column_stack([
            2 * l_6x10[:, 0] * b0 + l_6x10[:, 1] * b1 + l_6x10[:, 3] * b2 + l_6x10[:, 6] * b3,
            l_6x10[:, 1] * b0 + 2 * l_6x10[:, 2] * b1 + l_6x10[:, 4] * b2 + l_6x10[:, 7] * b3,
            l_6x10[:, 3] * b0 + l_6x10[:, 4] * b1 + 2 * l_6x10[:, 5] * b2 + l_6x10[:, 8] * b3,
            l_6x10[:, 6] * b0 + l_6x10[:, 7] * b1 + l_6x10[:, 8] * b2 + 2 * l_6x10[:, 9] * b3,
        ])
        products = np.array([
            b0 * b0, b0 * b1, b1 * b1, b0 * b2, b1 * b2,
            b2 * b2, b0 * b3, b1 * b3, b2 * b3, b3 * b3,
        ])
        residual = rho - l_6x10 @ products
        try:
            step = qr_solve(jac, residual)
        except np.linalg.LinAlgError:
            break
        betas += step
    return betas


class EPnP:
    """Camera pose from at least four 3D-2D correspondences (EPnP method)."""

    def __init__(self, fu, fv, uc, vc):
        self.fu = float(fu)
        self.fv = float(fv)
        self.uc = float(uc)
        self.vc = float(vc)

    @staticmethod
    def _validate(points_world, points_image):
        pws = np.asarray(points_world, dtype=float)
        us = np.asarray(points_image, dtype=float)
        if pws.ndim != 2 or pws.shape[1] != 3:
            raise ValueError("points_world must be an (N, 3) array")
        if us.ndim != 2 or us.shape[1] != 2:
            raise ValueError("points_image must be an (N, 2) array")
        if len(pws) != len(us):
            raise ValueError("points_world and points_image must have equal length")
        return pws, us

    @staticmethod
    def _choose_control_points(pws: np.ndarray) -> np.ndarray:
        centroid = pws.mean(axis=0)
        centred = pws - centroid
        u, dc, _ = np.linalg.svd(centred.T @ centred)
        scales = np.sqrt(dc / len(pws))
        return np.vstack([centroid, centroid + scales[:, None] * u.T])

    @staticmethod
    def _barycentric(pws: np.ndarray, cws: np.ndarray) -> np.ndarray:
        cc = (cws[1:] - cws[0]).T
        cc_inv = np.linalg.pinv(cc)
        rest = (pws - cws[0]) @ cc_inv.T
        first = 1.0 - rest.sum(axis=1)
        return np.column_stack([first, rest])

    def _fill_m(self, alphas: np.ndarray, us: np.ndarray) -> np.ndarray:
        m = np.zeros((2 * len(us), 12))
        m[0::2, 0::3] = alphas * self.fu
        m[0::2, 2::3] = alphas * (self.uc - us[:, 0])[:, None]
        m[1::2, 1::3] = alphas * self.fv
        m[1::2, 2::3] = alphas * (self.vc - us[:, 1])[:, None]
        return m

    @staticmethod
    def _estimate_r_and_t(pcs: np.ndarray, pws: np.ndarray):
        pc0 = pcs.mean(axis=0)
        pw0 = pws.mean(axis=0)
        abt = (pcs - pc0).T @ (pws - pw0)
        u, _, vt = np.linalg.svd(abt)
        rotation = u @ vt
        if np.linalg.det(rotation) < 0:
            rotation[2] = -rotation[2]
        translation = pc0 - rotation @ pw0
        return rotation, translation

    def _compute_r_and_t(self, ut, betas, alphas, pws, us):
        ccs = sum(betas[i] * ut[11 - i].reshape(4, 3) for i in range(4))
        pcs = alphas @ ccs
        if pcs[0, 2] < 0.0:
            pcs = -pcs
        rotation, translation = self._estimate_r_and_t(pcs, pws)
        return rotation, translation, self.reprojection_error(rotation, translation, pws, us)

    def compute_pose(self, points_world, points_image):
        """Return ``(rotation, translation, mean_reprojection_error)``."""
        pws, us = self._validate(points_world, points_image)
        if len(pws) < 4:
            raise ValueError("at least four correspondences are required")

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            cws = self._choose_control_points(pws)
            alphas = self._barycentric(pws, cws)
            m = self._fill_m(alphas, us)
            u, _, _ = np.linalg.svd(m.T @ m)
            ut = u.T

            l_6x10 = _compute_l_6x10(ut)
            rho = _compute_rho(cws)

            best = None
            for approx in (_betas_approx_1, _betas_approx_2, _betas_approx_3):
                betas = _gauss_newton(l_6x10, rho, approx(l_6x10, rho))
                candidate = self._compute_r_and_t(ut, betas, alphas, pws, us)
                if best is None or candidate[2] < best[2]:
                    best = candidate
        return best

    def reprojection_error(self, rotation, translation, points_world, points_image):
        """Mean Euclidean pixel distance between projections and observations."""
        pws, us = self._validate(points_world, points_image)
        if len(pws) == 0:
            raise ValueError("at least one correspondence is required")
        r = np.asarray(rotation, dtype=float)
        t = np.asarray(translation, dtype=float).reshape(3)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            cam = pws @ r.T + t
            inv_z = 1.0 / cam[:, 2]
            ue = self.uc + self.fu * cam[:, 0] * inv_z
            ve = self.vc + self.fv * cam[:, 1] * inv_z
            dist = np.sqrt((us[:, 0] - ue) ** 2 + (us[:, 1] - ve) ** 2)
        return float(dist.mean())