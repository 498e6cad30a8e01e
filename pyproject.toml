[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "picampost"
version = "0.1.0"
description = "Post-processing stages for YUV420 camera frames: object detection, segmentation, pose plotting, Sobel edges and piecewise linear functions"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "camera",
    "yuv420",
    "post-processing",
    "object-detection",
    "segmentation",
    "pose",
    "sobel",
    "piecewise-linear",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Multimedia :: Graphics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["picampost"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
