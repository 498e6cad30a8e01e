"""Object detection stage: boxes, classes and scores from a detection model."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from os import PathLike
from typing import Any

import numpy as np

from picampost.detection import Detection, Rectangle
from picampost.stage import CompletedRequest, register_stage
from picampost.tf_stage import InterpreterFactory, TfConfig, TfStage

logger = logging.getLogger(__name__)

NAME = "object_detect_tf"
WIDTH = 300
HEIGHT = 300


def read_labels(path: str | PathLike[str], skip_first: bool = False) -> list[str]:
    """Read one label per line, optionally discarding the first line."""
    with open(path, encoding="utf-8", newline="") as f:
        text = f.read()
    lines = text.split("\n")
    if text.endswith("\n") or not text:
        lines.pop()
    return lines[1:] if skip_first else lines


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


@dataclass
class ObjectDetectTfConfig(TfConfig):
    confidence_threshold: float = 0.5
    overlap_threshold: float = 0.5


class ObjectDetectTfStage(TfStage):
    """Detects objects and attaches them as "object_detect.results" metadata."""

    config: ObjectDetectTfConfig

    def __init__(self, app: Any, interpreter_factory: InterpreterFactory | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, interpreter_factory)
        self.config = ObjectDetectTfConfig()
        self.labels: list[str] = []
        self.output_results: list[Detection] = []

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        self.config.confidence_threshold = float(params.get("confidence_threshold", 0.5))
        self.config.overlap_threshold = float(params.get("overlap_threshold", 0.5))

        labels_file = str(params.get("labels_file", ""))
        try:
            self.labels = read_labels(labels_file, skip_first=True)
        except OSError as exc:
            raise RuntimeError("ObjectDetectTfStage: Failed to load labels file") from exc
        if self.config.verbose:
            logger.info("Read %d labels", len(self.labels))

        interp = self.interpreter
        dims = interp.tensor(interp.outputs()[0]).dims
        if dims != (1, 10, 4):
            raise RuntimeError("ObjectDetectTfStage: unexpected output dimensions")

    def check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("ObjectDetectTfStage: Main stream is required")

    def apply_results(self, completed_request: CompletedRequest) -> None:
        completed_request.post_process_metadata["object_detect.results"] = list(
            self.output_results
        )

    def interpret_outputs(self) -> None:
        interp = self.interpreter
        box_index, class_index, score_index = interp.outputs()[:3]
        box_tensor = interp.tensor(box_index)
        num_detections = box_tensor.dims[1]
        boxes = box_tensor.data.reshape(-1, 4)[:num_detections]
        classes = interp.tensor(class_index).data[:num_detections]
        scores = interp.tensor(score_index).data[:num_detections]

        cfg = self.config
        lores, main = self.lores_info, self.main_stream_info
        results: list[Detection] = []

        for box, category, score in zip(boxes, classes, scores):
            if score < cfg.confidence_threshold:
                continue
            top, left, bottom, right = (np.float32(v) for v in box)
            # Coordinates in the WIDTH x HEIGHT image fed to the network.
            y = _clamp(int(np.float32(HEIGHT) * top), 0, HEIGHT)
            x = _clamp(int(np.float32(WIDTH) * left), 0, WIDTH)
            h = _clamp(int(np.float32(HEIGHT) * bottom - np.float32(y)), 0, HEIGHT)
            w = _clamp(int(np.float32(WIDTH) * right - np.float32(x)), 0, WIDTH)
            # The network saw a centre crop of the lores image.
            y += (lores.height - HEIGHT) // 2
            x += (lores.width - WIDTH) // 2
            # The lores image is a pure scaling of the main image.
            y = y * main.height // lores.height
            x = x * main.width // lores.width
            h = h * main.height // lores.height
            w = w * main.width // lores.width

            c = int(category)
            detection = Detection(c, self.labels[c], float(score), Rectangle(x, y, w, h))

            for idx, prev in enumerate(results):
                if prev.category != c:
                    continue
                prev_area = prev.box.area()
                new_area = detection.box.area()
                overlap = prev.box.bounded_to(detection.box).area()
                if (
                    overlap > cfg.overlap_threshold * prev_area
                    or overlap > cfg.overlap_threshold * new_area
                ):
                    if detection.confidence > prev.confidence:
                        results[idx] = detection
                    break
            else:
                results.append(detection)

        self.output_results = results
        if cfg.verbose:
            for detection in results:
                logger.info("%s", detection)


register_stage(NAME, ObjectDetectTfStage)