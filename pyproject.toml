[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "orbpose"
version = "0.1.0"
description = "Camera pose estimation building blocks for feature-based visual SLAM: EPnP with RANSAC, Sim3 alignment, local map selection, relocalization and trajectory export."
requires-python = ">=3.10"
keywords = ["slam", "pnp", "epnp", "sim3", "ransac", "pose-estimation", "computer-vision", "trajectory"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
    "numpy",
]

[tool.hatch.build.targets.wheel]
packages = ["orbpose"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
