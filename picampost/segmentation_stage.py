"""Image segmentation stage: a per-pixel category map from a segmentation model."""

from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from os import PathLike
from typing import Any

import numpy as np

from picampost.detection import Segmentation
from picampost.object_detect import read_labels
from picampost.stage import CompletedRequest, register_stage
from picampost.tf_stage import InterpreterFactory, TfConfig, TfStage

NAME = "segmentation_tf"
WIDTH = 257
HEIGHT = 257


def read_labels_file(path: str | PathLike[str]) -> list[str]:
    """Read one label per line."""
    try:
        return read_labels(path)
    except OSError as exc:
        raise RuntimeError("SegmentationTfStage: Failed to load labels file") from exc


def _histogram_summary(hist: Sequence[int], labels: Sequence[str], threshold: int) -> str:
    ranked = sorted(enumerate(hist), key=lambda item: item[1], reverse=True)
    parts = [f"{labels[index]} ({count})" for index, count in ranked if count >= threshold]
    # Stop at the first bin below the threshold, as the bins are sorted.
    return ", ".join(parts)


@dataclass
class SegmentationTfConfig(TfConfig):
    draw: bool = True
    threshold: int = 5000


class SegmentationTfStage(TfStage):
    """Segments the image; optionally draws the map into the main image's corner."""

    config: SegmentationTfConfig

    def __init__(self, app: Any, interpreter_factory: InterpreterFactory | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, interpreter_factory)
        self.config = SegmentationTfConfig()
        self.labels: list[str] = []
        self.segmentation: bytes = bytes(WIDTH * HEIGHT)

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        self.config.draw = bool(int(params.get("draw", 1)))
        self.config.threshold = int(params.get("threshold", 5000))
        self.labels = read_labels_file(str(params.get("labels_file", "")))

        interp = self.interpreter
        dims = interp.tensor(interp.outputs()[0]).dims
        if (
            len(dims) != 4
            or dims[1] != HEIGHT
            or dims[2] != WIDTH
            or dims[3] != len(self.labels)
        ):
            raise RuntimeError("SegmentationTfStage: Unexpected output tensor size")

    def check_configuration(self) -> None:
        if self.main_stream is None and self.config.draw:
            raise RuntimeError("SegmentationTfStage: Main stream is required for drawing")

    def interpret_outputs(self) -> None:
        interp = self.interpreter
        num_categories = len(self.labels)
        output = interp.tensor(interp.outputs()[0]).data[: WIDTH * HEIGHT * num_categories]
        # For each pixel pick the category with the largest confidence.
        categories = np.argmax(output.reshape(WIDTH * HEIGHT, num_categories), axis=1)
        self.segmentation = categories.astype(np.uint8).tobytes()

        if self.config.verbose:
            hist = np.bincount(categories, minlength=num_categories).tolist()
            print(_histogram_summary(hist, self.labels, self.config.threshold), file=sys.stderr)

    def apply_results(self, completed_request: CompletedRequest) -> None:
        completed_request.post_process_metadata["segmentation.result"] = Segmentation(
            WIDTH, HEIGHT, list(self.labels), self.segmentation
        )
        if not self.config.draw:
            return

        info = self.main_stream_info
        data = np.frombuffer(completed_request.buffers[self.main_stream], dtype=np.uint8)
        y_offset = info.height - HEIGHT
        x_offset = info.width - WIDTH
        scale = 255 // len(self.labels)

        seg = np.frombuffer(self.segmentation, dtype=np.uint8).reshape(HEIGHT, WIDTH)
        luma = data[: info.height * info.stride].reshape(info.height, info.stride)
        luma[y_offset : y_offset + HEIGHT, x_offset : x_offset + WIDTH] = (
            scale * seg.astype(np.int64)
        ) & 0xFF

        # Make the drawn region greyscale.
        u_start = info.height * info.stride
        uv_size = (info.height // 2) * (info.stride // 2)
        y_offset //= 2
        x_offset //= 2
        for plane_start in (u_start, u_start + uv_size):
            plane = data[plane_start : plane_start + uv_size].reshape(
                info.height // 2, info.stride // 2
            )
            plane[y_offset : y_offset + HEIGHT // 2, x_offset : x_offset + WIDTH // 2] = 128


register_stage(NAME, SegmentationTfStage)