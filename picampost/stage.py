"""Post-processing stage base class, registry and shared helpers."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import numpy as np


@dataclass
class StreamInfo:
    """Geometry and format of an image stream."""

    width: int = 0
    height: int = 0
    stride: int = 0
    pixel_format: str = "YUV420"
    colour_space: str | None = None


@dataclass
class CompletedRequest:
    """A finished camera request: frame buffers by stream plus metadata."""

    sequence: int = 0
    buffers: dict[Any, bytearray] = field(default_factory=dict)
    post_process_metadata: dict[str, Any] = field(default_factory=dict)


class PostProcessingStage(ABC):
    """Base class for a stage that inspects or alters each completed request."""

    def __init__(self, app: Any) -> None:
        self.app = app
        self.use_case: str | None = None
        self.running = False

    @abstractmethod
    def name(self) -> str:
        """The name the stage is registered under."""

    def read(self, params: Mapping[str, Any]) -> None:
        """Read the stage's parameters; the default reads nothing."""

    def adjust_config(self, use_case: str, config: Any) -> None:
        """Record the use case; the default leaves the configuration as it is."""
        self.use_case = use_case

    def configure(self) -> None:
        """Called once the camera streams are configured."""

    def start(self) -> None:
        """Called when the camera starts."""
        self.running = True

    @abstractmethod
    def process(self, completed_request: CompletedRequest) -> bool:
        """Process a request; return True if it is to be dropped."""

    def stop(self) -> None:
        """Called when the camera stops."""
        self.running = False

    def teardown(self) -> None:
        """Called when the streams are torn down."""
        self.running = False
        self.use_case = None


def _as_uint8(buffer: Any) -> np.ndarray:
    if isinstance(buffer, np.ndarray):
        return buffer.reshape(-1).astype(np.uint8, copy=False)
    return np.frombuffer(buffer, dtype=np.uint8)


def yuv420_to_rgb(src: Any, src_info: StreamInfo, dst_info: StreamInfo) -> np.ndarray:
    """Convert a planar YUV420 image to packed RGB, cropping from the centre.

    Returns a flat uint8 array of dst_info.height * dst_info.stride bytes.
    """
    if src_info.width < dst_info.width or src_info.height < dst_info.height:
        raise ValueError("yuv420_to_rgb: destination larger than source")
    if dst_info.stride < dst_info.width * 3:
        raise ValueError("yuv420_to_rgb: destination stride too small")

    data = _as_uint8(src)
    stride = src_info.stride
    half_stride = stride // 2
    off_x = ((src_info.width - dst_info.width) // 2) & ~1
    off_y = ((src_info.height - dst_info.height) // 2) & ~1
    y_size = src_info.height * stride
    u_size = (src_info.height // 2) * half_stride

    rows = np.arange(dst_info.height) + off_y
    cols = np.arange(dst_info.width)
    luma = data[rows[:, None] * stride + (cols + off_x)[None, :]].astype(np.float64)
    chroma_index = (rows // 2)[:, None] * half_stride + (off_x // 2 + cols // 2)[None, :]
    u = data[y_size + chroma_index].astype(np.float64) - 128
    v = data[y_size + u_size + chroma_index].astype(np.float64) - 128

    r = luma + 1.402 * v
    g = luma - 0.345 * u - 0.714 * v
    b = luma + 1.771 * u
    rgb = np.clip(np.trunc(np.stack([r, g, b], axis=-1)), 0, 255).astype(np.uint8)

    out = np.zeros((dst_info.height, dst_info.stride), dtype=np.uint8)
    out[:, : dst_info.width * 3] = rgb.reshape(dst_info.height, dst_info.width * 3)
    return out.reshape(-1)


def execution_time(f: Callable[..., Any], *args: Any, **kwargs: Any) -> float:
    """Run f with the given arguments and return how long it took, in microseconds."""
    t1 = time.perf_counter()
    f(*args, **kwargs)
    t2 = time.perf_counter()
    return (t2 - t1) * 1e6


def get_json_array(
    params: Mapping[str, Any], key: str, default: Sequence[Any] = ()
) -> list[Any]:
    """Read a list from params, padded with the tail of default if shorter."""
    values = list(params[key]) if key in params else []
    values.extend(default[len(values):])
    return values


StageFactory = Callable[[Any], PostProcessingStage]

_stages: dict[str, StageFactory] = {}


def register_stage(name: str, create: StageFactory) -> StageFactory:
    """Register a stage factory under a name, replacing any earlier one."""
    _stages[name] = create
    return create


def get_post_processing_stages() -> Mapping[str, StageFactory]:
    """A read-only view of all registered stage factories."""
    return MappingProxyType(_stages)