"""Sobel edge-detection stage for YUV420 images."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import numpy as np

from picampost.stage import CompletedRequest, PostProcessingStage, register_stage

NAME = "sobel_cv"
_SCHARR = -1


def _deriv_kernel(order: int, size: int) -> np.ndarray:
    if size == _SCHARR:
        return np.array([3, 10, 3] if order == 0 else [-1, 0, 1], dtype=np.int64)
    if size == 1 and order > 0:
        size = 3
    kernel = np.array([1], dtype=np.int64)
    for _ in range(size - 1 - order):
        kernel = np.convolve(kernel, [1, 1])
    for _ in range(order):
        kernel = np.convolve(kernel, [-1, 1])
    return kernel


def _filter(image: np.ndarray, kx: np.ndarray, ky: np.ndarray) -> np.ndarray:
    """Separable correlation with reflect-101 borders."""
    rx, ry = len(kx) // 2, len(ky) // 2
    height, width = image.shape
    padded = np.pad(image.astype(np.int64), ((ry, ry), (rx, rx)), mode="reflect")
    rows = sum(int(c) * padded[:, i : i + width] for i, c in enumerate(kx))
    return sum(int(c) * rows[i : i + height, :] for i, c in enumerate(ky))


def sobel_edges(image: np.ndarray, ksize: int = 3) -> np.ndarray:
    """Blur, then combine the absolute x and y Sobel gradients with equal weight.

    ksize is 1, 3, 5, ... 31, or -1 for the Scharr operator.
    """
    if ksize != _SCHARR and (ksize < 1 or ksize > 31 or ksize % 2 == 0):
        raise ValueError(f"sobel_edges: invalid kernel size {ksize}")
    image = np.asarray(image)
    if image.ndim != 2:
        raise ValueError("sobel_edges: expected a single-channel image")

    smooth = np.array([1, 2, 1], dtype=np.int64)
    blurred = (_filter(image, smooth, smooth) + 8) >> 4

    grad_x = _filter(blurred, _deriv_kernel(1, ksize), _deriv_kernel(0, ksize))
    grad_y = _filter(blurred, _deriv_kernel(0, ksize), _deriv_kernel(1, ksize))
    abs_x = np.clip(np.abs(np.clip(grad_x, -32768, 32767)), 0, 255)
    abs_y = np.clip(np.abs(np.clip(grad_y, -32768, 32767)), 0, 255)
    combined = np.rint(0.5 * abs_x + 0.5 * abs_y)
    return np.clip(combined, 0, 255).astype(np.uint8)


class SobelCvStage(PostProcessingStage):
    """Replaces the main image with its edge map, in greyscale."""

    stream: Any = None
    ksize: int = 3

    def name(self) -> str:
        return NAME

    def read(self, params: Mapping[str, Any]) -> None:
        self.ksize = int(params.get("ksize", 3))

    def configure(self) -> None:
        self.stream = self.app.get_main_stream()
        if (
            self.stream is None
            or self.app.get_stream_info(self.stream).pixel_format != "YUV420"
        ):
            raise RuntimeError("SobelCvStage: only YUV420 format supported")

    def process(self, completed_request: CompletedRequest) -> bool:
        info = self.app.get_stream_info(self.stream)
        data = np.frombuffer(completed_request.buffers[self.stream], dtype=np.uint8)
        y_size = info.stride * info.height
        data[y_size : y_size + y_size // 2] = 128

        luma = data[:y_size].reshape(info.height, info.stride)[:, : info.width]
        luma[...] = sobel_edges(luma, self.ksize)
        return False


register_stage(NAME, SobelCvStage)