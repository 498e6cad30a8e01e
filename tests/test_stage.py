import numpy as np
import pytest

from picampost.stage import (
    CompletedRequest,
    PostProcessingStage,
    StreamInfo,
    execution_time,
    get_json_array,
    get_post_processing_stages,
    register_stage,
    yuv420_to_rgb,
)


def make_yuv(width, height, luma, u_plane, v_plane):
    return bytes(luma) + bytes(u_plane) + bytes(v_plane)


def chroma_count(width, height):
    return (height // 2) * (width // 2)


def rgb_rows(out, info):
    return out.reshape(info.height, info.stride)[:, : info.width * 3].reshape(
        info.height, info.width, 3
    )


def test_grey_input_gives_equal_channels():
    w, h = 6, 4
    luma = [(i * 7) % 256 for i in range(w * h)]
    n = chroma_count(w, h)
    src = make_yuv(w, h, luma, [128] * n, [128] * n)
    info = StreamInfo(width=w, height=h, stride=w)
    dst = StreamInfo(width=w, height=h, stride=w * 3)
    out = yuv420_to_rgb(src, info, dst)
    pixels = rgb_rows(out, dst)
    expected = np.array(luma, dtype=np.uint8).reshape(h, w)
    for channel in range(3):
        assert np.array_equal(pixels[:, :, channel], expected)


def test_pinned_grey_value():
    w, h = 4, 2
    n = chroma_count(w, h)
    src = make_yuv(w, h, [100] * (w * h), [128] * n, [128] * n)
    out = yuv420_to_rgb(src, StreamInfo(w, h, w), StreamInfo(w, h, w * 3))
    assert out.tolist() == [100] * (w * h * 3)


def test_centre_crop():
    w, h = 8, 4
    luma = list(range(w * h))
    n = chroma_count(w, h)
    src = make_yuv(w, h, luma, [128] * n, [128] * n)
    dst = StreamInfo(width=4, height=2, stride=12)
    out = yuv420_to_rgb(src, StreamInfo(w, h, w), dst)
    row0 = luma[2:6]
    row1 = luma[w + 2: w + 6]
    expected = [v for v in row0 + row1 for _ in range(3)]
    assert out.tolist() == expected


def test_output_padding_and_length():
    w, h = 4, 2
    n = chroma_count(w, h)
    src = make_yuv(w, h, [50] * (w * h), [128] * n, [128] * n)
    dst = StreamInfo(width=w, height=h, stride=w * 3 + 4)
    out = yuv420_to_rgb(src, StreamInfo(w, h, w), dst)
    assert out.size == dst.height * dst.stride
    rows = out.reshape(h, dst.stride)
    assert rows[:, w * 3:].tolist() == [[0] * 4] * h


def test_odd_destination_size():
    w, h = 6, 6
    luma = [(i * 11) % 256 for i in range(w * h)]
    n = chroma_count(w, h)
    src = make_yuv(w, h, luma, [128] * n, [128] * n)
    dst = StreamInfo(width=5, height=3, stride=15)
    pixels = rgb_rows(yuv420_to_rgb(src, StreamInfo(w, h, w), dst), dst)
    expected = np.array(luma, dtype=np.uint8).reshape(h, w)[:3, :5]
    assert np.array_equal(pixels[:, :, 1], expected)


def test_chroma_is_shared_by_2x2_blocks():
    w, h = 8, 4
    n = chroma_count(w, h)
    u_plane = [(i * 37) % 256 for i in range(n)]
    src = make_yuv(w, h, [100] * (w * h), u_plane, [128] * n)
    dst = StreamInfo(width=w, height=h, stride=w * 3)
    pixels = rgb_rows(yuv420_to_rgb(src, StreamInfo(w, h, w), dst), dst)
    for y in range(h):
        for x in range(w):
            assert pixels[y, x].tolist() == pixels[y, x ^ 1].tolist()
            assert pixels[y, x].tolist() == pixels[y ^ 1, x].tolist()


def test_values_are_clamped():
    w, h = 2, 2
    src = make_yuv(w, h, [255, 255, 0, 0], [0], [255])
    out = yuv420_to_rgb(src, StreamInfo(w, h, w), StreamInfo(w, h, w * 3))
    pixels = out.reshape(h, w, 3)
    assert pixels[0, 0, 0] == 255
    assert pixels[1, 0, 2] == 0


def test_accepts_numpy_input():
    w, h = 4, 2
    n = chroma_count(w, h)
    raw = make_yuv(w, h, [60] * (w * h), [128] * n, [128] * n)
    a = yuv420_to_rgb(raw, StreamInfo(w, h, w), StreamInfo(w, h, w * 3))
    b = yuv420_to_rgb(np.frombuffer(raw, dtype=np.uint8), StreamInfo(w, h, w), StreamInfo(w, h, w * 3))
    assert np.array_equal(a, b)


def test_rejects_larger_destination():
    with pytest.raises(ValueError):
        yuv420_to_rgb(bytes(12), StreamInfo(4, 2, 4), StreamInfo(8, 2, 24))


def test_rejects_small_stride():
    with pytest.raises(ValueError):
        yuv420_to_rgb(bytes(12), StreamInfo(4, 2, 4), StreamInfo(4, 2, 4))


def test_execution_time_calls_function():
    calls = []
    elapsed = execution_time(lambda a, b=0: calls.append((a, b)), 1, b=2)
    assert calls == [(1, 2)]
    assert elapsed >= 0.0


def test_get_json_array_pads_from_default():
    assert get_json_array({"k": [1, 2]}, "k", [9, 9, 9, 9]) == [1, 2, 9, 9]
    assert get_json_array({}, "k", [3, 4]) == [3, 4]
    assert get_json_array({"k": [1, 2, 3]}, "k", [7]) == [1, 2, 3]
    assert get_json_array({}, "k") == []


class _Stage(PostProcessingStage):
    def name(self):
        return "test_stage"

    def process(self, completed_request):
        completed_request.post_process_metadata["seen"] = completed_request.sequence
        return True


def test_registry_round_trip():
    factory = register_stage("test_stage", _Stage)
    stages = get_post_processing_stages()
    assert stages["test_stage"] is factory
    stage = stages["test_stage"]("app")
    assert stage.app == "app"
    assert stage.name() == "test_stage"


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        get_post_processing_stages()["other"] = _Stage


def test_base_class_is_abstract():
    with pytest.raises(TypeError):
        PostProcessingStage(None)


def test_subclass_process_and_default_hooks():
    stage = _Stage(app=None)
    request = CompletedRequest(sequence=7)
    stage.read({})
    stage.configure()
    stage.start()
    assert stage.process(request) is True
    stage.stop()
    stage.teardown()
    assert request.post_process_metadata == {"seen": 7}