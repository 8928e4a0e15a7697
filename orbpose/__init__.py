"""Pose estimation building blocks for feature-based visual SLAM."""

__version__ = "0.1.0"

__all__ = [
    "epnp",
    "linalg",
    "local_map",
    "motion",
    "pnp_ransac",
    "relocalization",
    "settings",
    "sim3",
    "trajectory",
    "viewer_state",
]