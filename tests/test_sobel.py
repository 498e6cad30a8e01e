import numpy as np
import pytest

from picampost.sobel import SobelCvStage, sobel_edges
from picampost.stage import CompletedRequest, StreamInfo, get_post_processing_stages


class FakeApp:
    def __init__(self, info=None):
        self.info = info

    def get_main_stream(self):
        return "main" if self.info else None

    def get_stream_info(self, stream):
        return self.info


def step_image(width=16, height=8, edge=8):
    img = np.zeros((height, width), dtype=np.uint8)
    img[:, edge:] = 255
    return img


def test_uniform_image_has_no_edges():
    img = np.full((10, 12), 77, dtype=np.uint8)
    assert not sobel_edges(img).any()


def test_step_edge_detected_only_near_edge():
    result = sobel_edges(step_image())
    assert result.shape == (8, 16)
    assert np.all(result[:, :5] == 0)
    assert np.all(result[:, 12:] == 0)
    assert np.all(result[:, 7] > 0) and np.all(result[:, 8] > 0)
    assert np.all(result == result[0])


def test_transpose_invariance():
    rng = np.random.default_rng(3)
    img = rng.integers(0, 256, size=(12, 15), dtype=np.uint8)
    for ksize in (1, 3, 5, -1):
        assert np.array_equal(sobel_edges(img.T, ksize), sobel_edges(img, ksize).T)


@pytest.mark.parametrize("ksize", [0, 2, 4, 33, -3])
def test_invalid_kernel_size(ksize):
    with pytest.raises(ValueError):
        sobel_edges(step_image(), ksize)


def test_rejects_multichannel_image():
    with pytest.raises(ValueError):
        sobel_edges(np.zeros((4, 4, 3), dtype=np.uint8))


def test_read_ksize():
    stage = SobelCvStage(FakeApp())
    stage.read({})
    assert stage.ksize == 3
    stage.read({"ksize": 5})
    assert stage.ksize == 5


def test_configure_requires_yuv420_main_stream():
    with pytest.raises(RuntimeError, match="only YUV420"):
        SobelCvStage(FakeApp()).configure()
    info = StreamInfo(16, 8, 16, pixel_format="RGB888")
    with pytest.raises(RuntimeError, match="only YUV420"):
        SobelCvStage(FakeApp(info)).configure()


def test_process_writes_edges_and_grey_chroma():
    info = StreamInfo(16, 8, 16)
    stage = SobelCvStage(FakeApp(info))
    stage.configure()
    buffer = bytearray(16 * 8 * 3 // 2)
    buffer[: 16 * 8] = step_image().tobytes()
    request = CompletedRequest(buffers={"main": buffer})
    assert stage.process(request) is False
    luma = np.frombuffer(buffer, dtype=np.uint8)[: 16 * 8].reshape(8, 16)
    assert np.array_equal(luma, sobel_edges(step_image()))
    assert set(buffer[16 * 8 :]) == {128}


def test_stage_name_and_registration():
    assert SobelCvStage(FakeApp()).name() == "sobel_cv"
    assert get_post_processing_stages()["sobel_cv"] is SobelCvStage