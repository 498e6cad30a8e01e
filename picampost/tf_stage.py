"""Base class for stages that run a neural network on the low resolution stream."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from picampost.stage import (
    CompletedRequest,
    PostProcessingStage,
    StreamInfo,
    execution_time,
    yuv420_to_rgb,
)

logger = logging.getLogger(__name__)


class TensorType(Enum):
    """Element type of a tensor."""

    UINT8 = "uint8"
    FLOAT32 = "float32"
    INT32 = "int32"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.value)


@dataclass
class Tensor:
    """A tensor: its dimensions, element type and flat data."""

    dims: tuple[int, ...]
    type: TensorType
    data: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.dims = tuple(int(d) for d in self.dims)
        if self.data is None:
            self.data = np.zeros(math.prod(self.dims), dtype=self.type.dtype)
        else:
            self.data = np.asarray(self.data, dtype=self.type.dtype).reshape(-1)

    @property
    def bytes(self) -> int:
        return int(self.data.nbytes)


class Interpreter:
    """A loaded model: a set of tensors and a function that runs the model on them."""

    def __init__(
        self,
        tensors: Sequence[Tensor],
        inputs: Sequence[int],
        outputs: Sequence[int],
        run: Callable[[Interpreter], None] | None = None,
    ) -> None:
        self._tensors = list(tensors)
        self._inputs = list(inputs)
        self._outputs = list(outputs)
        self._run = run
        self.num_threads: int | None = None

    def inputs(self) -> list[int]:
        return list(self._inputs)

    def outputs(self) -> list[int]:
        return list(self._outputs)

    def tensor(self, index: int) -> Tensor:
        return self._tensors[index]

    def set_num_threads(self, count: int) -> None:
        self.num_threads = count

    def invoke(self) -> None:
        """Run the model, reading the input tensors and filling the outputs."""
        if self._run is not None:
            self._run(self)


InterpreterFactory = Callable[[str], "Interpreter | None"]


@dataclass
class TfConfig:
    number_of_threads: int = 3
    refresh_rate: int = 5
    model_file: str = ""
    verbose: bool = False
    normalisation_offset: float = 127.5
    normalisation_scale: float = 127.5


class TfStage(PostProcessingStage):
    """Runs a model asynchronously on every refresh_rate-th low resolution frame.

    Subclasses supply name() and override read_extras, check_configuration,
    interpret_outputs and apply_results.
    """

    def __init__(
        self,
        app: Any,
        tf_w: int,
        tf_h: int,
        interpreter_factory: InterpreterFactory | None = None,
    ) -> None:
        super().__init__(app)
        if tf_w <= 0 or tf_h <= 0:
            raise ValueError("TfStage: Bad input dimensions")
        self.tf_w = tf_w
        self.tf_h = tf_h
        self.config: TfConfig = TfConfig()
        self.interpreter: Interpreter | None = None
        self.lores_stream: Any = None
        self.lores_info = StreamInfo()
        self.main_stream: Any = None
        self.main_stream_info = StreamInfo()
        self._interpreter_factory = interpreter_factory
        self._future_lock = threading.Lock()
        self._output_lock = threading.Lock()
        self._future: Future | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._lores_copy: bytes | None = None

    def read(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.number_of_threads = int(params.get("number_of_threads", 2))
        cfg.refresh_rate = int(params.get("refresh_rate", 5))
        cfg.model_file = str(params.get("model_file", ""))
        cfg.verbose = bool(int(params.get("verbose", 0)))
        cfg.normalisation_offset = float(params.get("normalisation_offset", 127.5))
        cfg.normalisation_scale = float(params.get("normalisation_scale", 127.5))

        self._initialise()
        self.read_extras(params)

    def _initialise(self) -> None:
        if self._interpreter_factory is None:
            raise RuntimeError("TfStage: Failed to load model")
        interpreter = self._interpreter_factory(self.config.model_file)
        if interpreter is None:
            raise RuntimeError("TfStage: Failed to construct interpreter")
        logger.info("TfStage: Loaded model %s", self.config.model_file)

        if self.config.number_of_threads != -1:
            interpreter.set_num_threads(self.config.number_of_threads)

        # Check that the model expects an RGB image of our size.
        tensor = interpreter.tensor(interpreter.inputs()[0])
        if tensor.type not in (TensorType.UINT8, TensorType.FLOAT32):
            raise RuntimeError("TfStage: Input tensor data type not supported")
        check = self.tf_w * self.tf_h * 3 * tensor.type.dtype.itemsize
        if check != tensor.bytes:
            raise RuntimeError("TfStage: Input tensor size mismatch")
        self.interpreter = interpreter

    def configure(self) -> None:
        verbose = self.config.verbose
        self.lores_stream = self.app.lores_stream()
        if self.lores_stream is not None:
            self.lores_info = self.app.get_stream_info(self.lores_stream)
            if verbose:
                logger.info(
                    "TfStage: Low resolution stream is %dx%d",
                    self.lores_info.width,
                    self.lores_info.height,
                )
            if self.tf_w > self.lores_info.width or self.tf_h > self.lores_info.height:
                logger.error("TfStage: WARNING: Low resolution image too small")
                self.lores_stream = None
        elif verbose:
            logger.info("TfStage: no low resolution stream")

        self.main_stream = self.app.get_main_stream()
        if self.main_stream is not None:
            self.main_stream_info = self.app.get_stream_info(self.main_stream)
            if verbose:
                logger.info(
                    "TfStage: Main stream is %dx%d",
                    self.main_stream_info.width,
                    self.main_stream_info.height,
                )
        elif verbose:
            logger.info("TfStage: No main stream")

        self.check_configuration()

    def process(self, completed_request: CompletedRequest) -> bool:
        if self.lores_stream is None:
            return False

        with self._future_lock:
            refresh = self.config.refresh_rate
            if (
                refresh
                and completed_request.sequence % refresh == 0
                and (self._future is None or self._future.done())
            ):
                # Copy the frame so the inference thread works on its own data.
                self._lores_copy = bytes(completed_request.buffers[self.lores_stream])
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(max_workers=1)
                self._future = self._executor.submit(self._timed_inference)

        with self._output_lock:
            self.apply_results(completed_request)
        return False

    def _timed_inference(self) -> None:
        time_taken = execution_time(self.run_inference)
        if self.config.verbose:
            logger.info("TfStage: Inference time: %.0f us", time_taken)

    def run_inference(self) -> None:
        """Convert the copied frame to RGB, run the model and interpret its outputs."""
        if self._lores_copy is None or self.interpreter is None:
            raise RuntimeError("TfStage: no frame or model to run inference on")
        tf_info = StreamInfo(self.tf_w, self.tf_h, self.tf_w * 3)
        rgb = yuv420_to_rgb(self._lores_copy, self.lores_info, tf_info)

        tensor = self.interpreter.tensor(self.interpreter.inputs()[0])
        if tensor.type is TensorType.UINT8:
            tensor.data[:] = rgb
        elif tensor.type is TensorType.FLOAT32:
            tensor.data[:] = (
                rgb.astype(np.float32) - self.config.normalisation_offset
            ) / self.config.normalisation_scale

        try:
            self.interpreter.invoke()
        except Exception as exc:
            raise RuntimeError("TfStage: Failed to invoke interpreter") from exc

        with self._output_lock:
            self.interpret_outputs()

    def stop(self) -> None:
        """Wait for any inference in flight; re-raise an error it ended with."""
        try:
            if self._future is not None:
                self._future.result()
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def read_extras(self, params: Mapping[str, Any]) -> None:
        """Read parameters specific to a stage; may also check the model."""

    def check_configuration(self) -> None:
        """Check the stream configuration, raising if the stage cannot run."""

    def interpret_outputs(self) -> None:
        """Turn the model outputs into results; runs on the inference thread."""

    def apply_results(self, completed_request: CompletedRequest) -> None:
        """Attach the latest results to a request; runs on the calling thread."""