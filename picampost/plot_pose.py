"""Stage that draws pose keypoints and limbs onto the main image."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from enum import IntEnum
from typing import Any

import numpy as np

from picampost.stage import CompletedRequest, PostProcessingStage, StreamInfo, register_stage

NAME = "plot_pose_cv"


class Feature(IntEnum):
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


_LIMBS = (
    (Feature.LEFT_SHOULDER, Feature.RIGHT_SHOULDER),
    (Feature.LEFT_SHOULDER, Feature.LEFT_ELBOW),
    (Feature.LEFT_SHOULDER, Feature.LEFT_HIP),
    (Feature.RIGHT_SHOULDER, Feature.RIGHT_ELBOW),
    (Feature.RIGHT_SHOULDER, Feature.RIGHT_HIP),
    (Feature.LEFT_ELBOW, Feature.LEFT_WRIST),
    (Feature.RIGHT_ELBOW, Feature.RIGHT_WRIST),
    (Feature.LEFT_HIP, Feature.RIGHT_HIP),
    (Feature.LEFT_HIP, Feature.LEFT_KNEE),
    (Feature.LEFT_KNEE, Feature.LEFT_ANKLE),
    (Feature.RIGHT_KNEE, Feature.RIGHT_HIP),
    (Feature.RIGHT_KNEE, Feature.RIGHT_ANKLE),
)

_COLOUR = 255
_RADIUS = 5
_THICKNESS = 2


def _region(img: np.ndarray, xmin: float, xmax: float, ymin: float, ymax: float):
    height, width = img.shape[:2]
    x0 = max(math.floor(xmin), 0)
    x1 = min(math.ceil(xmax), width - 1)
    y0 = max(math.floor(ymin), 0)
    y1 = min(math.ceil(ymax), height - 1)
    if x0 > x1 or y0 > y1:
        return None
    ys, xs = np.mgrid[y0 : y1 + 1, x0 : x1 + 1]
    return img[y0 : y1 + 1, x0 : x1 + 1], xs, ys


def draw_circle(
    img: np.ndarray,
    center: tuple[int, int],
    radius: int,
    colour: int,
    thickness: int = 1,
) -> None:
    """Draw a circle outline (or a filled disc if thickness < 0), clipped to img."""
    cx, cy = center
    half = max(thickness / 2, 0.5)
    reach = radius + half
    found = _region(img, cx - reach, cx + reach, cy - reach, cy + reach)
    if found is None:
        return
    view, xs, ys = found
    dist = np.hypot(xs - cx, ys - cy)
    mask = dist <= radius if thickness < 0 else np.abs(dist - radius) <= half
    view[mask] = colour


def draw_line(
    img: np.ndarray,
    start: tuple[int, int],
    end: tuple[int, int],
    colour: int,
    thickness: int = 1,
) -> None:
    """Draw a line segment of the given thickness, clipped to img."""
    (x0, y0), (x1, y1) = start, end
    half = max(thickness / 2, 0.5)
    found = _region(
        img, min(x0, x1) - half, max(x0, x1) + half, min(y0, y1) - half, max(y0, y1) + half
    )
    if found is None:
        return
    view, xs, ys = found
    dx, dy = x1 - x0, y1 - y0
    len2 = dx * dx + dy * dy
    t = 0.0 if len2 == 0 else np.clip(((xs - x0) * dx + (ys - y0) * dy) / len2, 0.0, 1.0)
    dist2 = (xs - (x0 + t * dx)) ** 2 + (ys - (y0 + t * dy)) ** 2
    view[dist2 <= half * half] = colour


def _luma_view(buffer: Any, info: StreamInfo) -> np.ndarray:
    data = np.frombuffer(buffer, dtype=np.uint8)
    return data[: info.height * info.stride].reshape(info.height, info.stride)[:, : info.width]


class PlotPoseCvStage(PostProcessingStage):
    """Draws the keypoints found by pose estimation onto the main stream."""

    stream: Any = None
    confidence_threshold: float = -1.0

    def name(self) -> str:
        return NAME

    def read(self, params: Mapping[str, Any]) -> None:
        self.confidence_threshold = float(params.get("confidence_threshold", -1.0))

    def configure(self) -> None:
        self.stream = self.app.get_main_stream()

    def process(self, completed_request: CompletedRequest) -> bool:
        if self.stream is None:
            return False
        metadata = completed_request.post_process_metadata
        all_locations = metadata.get("pose_estimation.locations", [])
        all_confidences = metadata.get("pose_estimation.confidences", [])
        if not all_locations:
            return False

        info = self.app.get_stream_info(self.stream)
        image = _luma_view(completed_request.buffers[self.stream], info)
        for locations, confidences in zip(all_locations, all_confidences):
            if confidences and locations:
                self.draw_features(image, locations, confidences)
        return False

    def draw_features(
        self,
        img: np.ndarray,
        locations: Sequence[tuple[int, int]],
        confidences: Sequence[float],
    ) -> None:
        """Circle the low-confidence keypoints and join confident ones with limbs."""
        threshold = self.confidence_threshold
        for feature in Feature:
            if confidences[feature] < threshold:
                draw_circle(img, tuple(locations[feature]), _RADIUS, _COLOUR, _THICKNESS)
        for a, b in _LIMBS:
            if confidences[a] > threshold and confidences[b] > threshold:
                draw_line(img, tuple(locations[a]), tuple(locations[b]), _COLOUR, _THICKNESS)


register_stage(NAME, PlotPoseCvStage)