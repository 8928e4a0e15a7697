"""Camera, sensor and ORB extractor settings read from a YAML settings file."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml

_DEFAULT_FPS = 30.0
_DEPTH_FACTOR_EPS = 1e-5


class Sensor(enum.IntEnum):
    """Kind of input the system processes."""

    MONOCULAR = 0
    STEREO = 1
    RGBD = 2


class _SettingsLoader(yaml.SafeLoader):
    """Safe YAML loader that also understands OpenCV matrix nodes."""


def _construct_opencv_matrix(loader, node):
    fields = loader.construct_mapping(node, deep=True)
    try:
        rows = int(fields["rows"])
        cols = int(fields["cols"])
        data = fields["data"]
    except KeyError as exc:
        raise ValueError(f"opencv-matrix node lacks {exc.args[0]!r}") from None
    return np.asarray(data, dtype=float).reshape(rows, cols)


_SettingsLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_opencv_matrix)


def parse_settings_text(text):
    """Parse settings text into a flat mapping of keys to values.

    A leading OpenCV ``%YAML:1.0`` directive is accepted.
    """
    lines = text.splitlines()
    cleaned = [line for line in lines if not line.lstrip().startswith("%YAML:")]
    data = yaml.load("\n".join(cleaned), Loader=_SettingsLoader)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("settings must be a mapping of names to values")
    return data


def load_settings(path):
    """Read and parse a settings file; raises ``FileNotFoundError`` if absent."""
    return parse_settings_text(Path(path).read_text(encoding="utf-8"))


def _number(mapping, key) -> float:
    """Read a numeric entry; a missing entry reads as zero."""
    value = mapping.get(key)
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"setting {key!r} is not a number: {value!r}") from None


@dataclass(frozen=True)
class CameraSettings:
    """Calibration and timing parameters of the camera."""

    sensor: Sensor
    fx: float
    fy: float
    cx: float
    cy: float
    k1: float
    k2: float
    p1: float
    p2: float
    k3: float
    bf: float
    fps: float
    rgb: bool
    th_depth: float | None
    depth_map_factor: float
    min_frames: int
    max_frames: int

    @classmethod
    def from_mapping(cls, mapping, sensor):
        """Build camera settings from a parsed settings mapping."""
        sensor = Sensor(sensor)
        fx = _number(mapping, "Camera.fx")
        bf = _number(mapping, "Camera.bf")

        fps = _number(mapping, "Camera.fps")
        if fps == 0:
            fps = _DEFAULT_FPS

        th_depth = None
        if sensor in (Sensor.STEREO, Sensor.RGBD):
            if fx == 0:
                raise ValueError("Camera.fx must be non-zero to compute the depth threshold")
            th_depth = bf * _number(mapping, "ThDepth") / fx

        depth_map_factor = 1.0
        if sensor is Sensor.RGBD:
            factor = _number(mapping, "DepthMapFactor")
            depth_map_factor = 1.0 if abs(factor) < _DEPTH_FACTOR_EPS else 1.0 / factor

        return cls(
            sensor=sensor,
            fx=fx,
            fy=_number(mapping, "Camera.fy"),
            cx=_number(mapping, "Camera.cx"),
            cy=_number(mapping, "Camera.cy"),
            k1=_number(mapping, "Camera.k1"),
            k2=_number(mapping, "Camera.k2"),
            p1=_number(mapping, "Camera.p1"),
            p2=_number(mapping, "Camera.p2"),
            k3=_number(mapping, "Camera.k3"),
            bf=bf,
            fps=fps,
            rgb=bool(int(_number(mapping, "Camera.RGB"))),
            th_depth=th_depth,
            depth_map_factor=depth_map_factor,
            min_frames=0,
            max_frames=int(fps),
        )

    @property
    def distortion(self) -> np.ndarray:
        """Distortion coefficients ``k1 k2 p1 p2`` with ``k3`` when non-zero."""
        coefficients = [self.k1, self.k2, self.p1, self.p2]
        if self.k3 != 0:
            coefficients.append(self.k3)
        return np.array(coefficients)

    def intrinsics(self):
        """Return the 3x3 calibration matrix."""
        k = np.eye(3)
        k[0, 0] = self.fx
        k[1, 1] = self.fy
        k[0, 2] = self.cx
        k[1, 2] = self.cy
        return k


@dataclass(frozen=True)
class OrbSettings:
    """Parameters of the ORB feature extractor."""

    n_features: int
    scale_factor: float
    n_levels: int
    ini_th_fast: int
    min_th_fast: int

    @classmethod
    def from_mapping(cls, mapping):
        """Build extractor settings from a parsed settings mapping."""
        return cls(
            n_features=int(_number(mapping, "ORBextractor.nFeatures")),
            scale_factor=_number(mapping, "ORBextractor.scaleFactor"),
            n_levels=int(_number(mapping, "ORBextractor.nLevels")),
            ini_th_fast=int(_number(mapping, "ORBextractor.iniThFAST")),
            min_th_fast=int(_number(mapping, "ORBextractor.minThFAST")),
        )