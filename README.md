# picampost

Post-processing stages for camera frames in planar YUV420 layout, and the
small toolkit they are built on. Frames are plain byte buffers (`bytearray`
or NumPy arrays); stages read and write them in place.

## Modules

- `picampost.pwl` – piecewise linear functions: `Pwl`, `Point`, `Interval`
  and `PerpType`. A `Pwl` can be evaluated (`eval`, `eval_with_span`),
  composed (`compose`), combined with another (`combine`, `map2`), inverted
  to find the closest point (`invert`), extended to a domain
  (`match_domain`), scaled (`*=`) and turned into a lookup table
  (`generate_lut`). `read` takes a flat sequence `x0, y0, x1, y1, ...` and
  raises `ValueError` if the x values do not increase strictly or there are
  fewer than two points.
- `picampost.stage` – the `PostProcessingStage` base class, `StreamInfo`,
  `CompletedRequest`, and helpers:
  - `yuv420_to_rgb(src, src_info, dst_info)` converts YUV420 to packed RGB,
    cropping from the centre of the source; it raises `ValueError` if the
    destination is larger than the source.
  - `execution_time(f, *args, **kwargs)` returns the run time in microseconds.
  - `get_json_array(params, key, default)` reads a list, padding it with the
    tail of `default`.
  - `register_stage(name, create)` and `get_post_processing_stages()` form a
    stage registry.
- `picampost.detection` – result types: `Rectangle` (with `area` and
  `bounded_to`), `Detection` and `Segmentation`.
- `picampost.tf_stage` – `TfStage`, a base class for neural-network stages.
  On every `refresh_rate`-th frame it copies the low-resolution frame,
  converts it to RGB on a worker thread, fills the model's input tensor and
  runs the model. The model is an `Interpreter` built from `Tensor` objects
  (`TensorType.UINT8`, `FLOAT32`, `INT32`) and a function that runs it; you
  supply it through `interpreter_factory`, which is called with the
  `model_file` parameter.
- `picampost.object_detect` – `ObjectDetectTfStage` (`"object_detect_tf"`):
  reads boxes, classes and scores from a 300×300 detection model, maps the
  boxes to main-stream coordinates, merges overlapping boxes of the same
  class and stores a list of `Detection` under
  `"object_detect.results"`. Also `read_labels(path, skip_first)`.
- `picampost.segmentation_stage` – `SegmentationTfStage` (`"segmentation_tf"`):
  takes the per-pixel argmax of a 257×257 segmentation model, stores a
  `Segmentation` under `"segmentation.result"` and, with `draw` on, paints
  the map in greyscale into the bottom-right corner of the main image. Also
  `read_labels_file(path)`.
- `picampost.plot_pose` – `PlotPoseCvStage` (`"plot_pose_cv"`): draws
  keypoints and limbs into the luma plane of the main stream from the
  `"pose_estimation.locations"` and `"pose_estimation.confidences"`
  metadata, using the 17 points of `Feature`. Also `draw_circle` and
  `draw_line` for single-channel NumPy images.
- `picampost.sobel` – `SobelCvStage` (`"sobel_cv"`): replaces the main image
  with its Sobel edge map and greys out the chroma. `sobel_edges(image,
  ksize)` does the filtering on its own (`ksize` 1, 3, …, 31, or -1 for
  Scharr).

A stage registers itself when its module is imported.

## The application object

Stages talk to an `app` object passed to their constructor. It must provide
`get_main_stream()`, `get_stream_info(stream)` returning a `StreamInfo`, and,
for `TfStage` subclasses, `lores_stream()`. A stream may be any hashable value
used as a key into `CompletedRequest.buffers`; `None` means the stream is
absent.

## Examples

Piecewise linear functions:

```python
from picampost.pwl import Pwl, Point

gamma = Pwl([Point(0, 0), Point(128, 200), Point(255, 255)])
print(gamma.eval(64))          # 100.0
lut = gamma.generate_lut()     # 256 entries, for x = 0 .. 255
```

YUV420 to RGB:

```python
import numpy as np
from picampost.stage import StreamInfo, yuv420_to_rgb

src_info = StreamInfo(width=640, height=480, stride=640)
dst_info = StreamInfo(width=300, height=300, stride=900)
frame = np.full(640 * 480 * 3 // 2, 128, dtype=np.uint8)
rgb = yuv420_to_rgb(frame, src_info, dst_info)   # flat, 300 * 900 bytes
```

Edges of a single-channel image:

```python
import numpy as np
from picampost.sobel import sobel_edges

image = np.zeros((8, 8), dtype=np.uint8)
image[:, 4:] = 255
edges = sobel_edges(image, ksize=3)
```

A model for the detection stage:

```python
from picampost.object_detect import ObjectDetectTfStage
from picampost.tf_stage import Interpreter, Tensor, TensorType

def run(interpreter):
    ...  # read interpreter.tensor(0).data, fill tensors 1, 2 and 3

def factory(model_file):
    tensors = [
        Tensor((1, 300, 300, 3), TensorType.UINT8),   # RGB input
        Tensor((1, 10, 4), TensorType.FLOAT32),       # boxes
        Tensor((1, 10), TensorType.FLOAT32),          # classes
        Tensor((1, 10), TensorType.FLOAT32),          # scores
    ]
    return Interpreter(tensors, inputs=[0], outputs=[1, 2, 3], run=run)

stage = ObjectDetectTfStage(app, factory)
stage.read({"labels_file": "labels.txt"})   # first line of the file is skipped
stage.configure()
```

## What this package does not do

- It loads no model files: `TfStage` runs whatever `Interpreter` the
  `interpreter_factory` returns, and without a factory `read` raises
  `RuntimeError`.
- It has no pose-estimation model stage; `PlotPoseCvStage` only draws
  keypoints that something else has put in the request's metadata.
- It has no preview window and no command-line program; it talks to no
  camera. Frames and requests come from your own code.

## Running the tests

```
pip install picampost[test]
pytest
```