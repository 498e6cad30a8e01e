"""Post-processing stages for YUV420 camera frames and piecewise linear functions."""

__version__ = "0.1.0"