import numpy as np
import pytest

from matching.frame_sampler import FrameSampler, FrameSamplerConfig, VideoDecodeError, frame_step, mark_changed
from matching.types import VideoFrame


def _frame(index: int, value: int) -> VideoFrame:
    return VideoFrame(time_offset=index / 10.0, frame_index=index, image=np.full((48, 64, 3), value, np.uint8))


def test_frame_step() -> None:
    assert frame_step(25.0, 5.0) == 125
    assert frame_step(29.97, 5.0) == 149
    assert frame_step(0.1, 5.0) == 1


def test_slow_drift_is_measured_against_last_changed_frame() -> None:
    # Each step is below the threshold, the accumulated drift is not.
    frames = [_frame(i, value) for i, value in enumerate([100, 103, 106, 109])]

    sampled = list(mark_changed(frames, threshold=0.98))

    assert [item.changed for item in sampled] == [True, False, True, False]
    assert sampled[0].similarity == 0.0
    assert sampled[1].similarity == pytest.approx(1 - 3 / 255)


def test_resolution_change_counts_as_changed() -> None:
    first = _frame(0, 50)
    second = VideoFrame(0.1, 1, np.full((48, 128, 3), 50, np.uint8))
    assert [item.changed for item in mark_changed([first, second])] == [True, True]


def test_sampler_reads_every_interval(scenario_video, slide_factory) -> None:
    path = scenario_video([slide_factory(1), slide_factory(2), slide_factory(1)])

    video = FrameSampler(FrameSamplerConfig(interval_s=5.0)).open(path)
    assert video.step == 50
    assert video.info.frame_count == 300
    assert video.expected_samples == 6

    sampled = list(video.frames())

    assert [item.frame.frame_index for item in sampled] == [0, 50, 100, 150, 200, 250]
    assert [item.frame.time_offset for item in sampled] == [0.0, 5.0, 10.0, 15.0, 20.0, 25.0]
    assert [item.changed for item in sampled] == [True, False, True, False, True, False]
    with pytest.raises(RuntimeError):
        video.frames()


def test_unreadable_video_raises(tmp_path) -> None:
    path = tmp_path / "broken.mp4"
    path.write_bytes(b"not a video at all" * 64)
    with pytest.raises(VideoDecodeError):
        video = FrameSampler().open(path)
        list(video.frames())


def test_missing_video_raises(tmp_path) -> None:
    with pytest.raises(VideoDecodeError):
        FrameSampler().open(tmp_path / "missing.avi")


def test_closed_video_yields_no_frames(scenario_video, slide_factory) -> None:
    path = scenario_video([slide_factory(1)])
    video = FrameSampler().open(path)
    video.close()
    with pytest.raises(VideoDecodeError):
        list(video.frames())
