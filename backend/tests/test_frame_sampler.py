"""Tests for deterministic frame sampling."""

import tempfile

import cv2
import numpy as np
import pytest

from conftest import encode_image, write_video
from vizprompts.errors import EmptyMediaError, UnsupportedMediaError
from vizprompts.schemas.media import MediaAsset
from vizprompts.services.frame_sampler import FrameSampler, compute_sample_indices


def _video_asset(data: bytes, filename: str = "clip.avi") -> MediaAsset:
    return MediaAsset(data=data, mime_type="video/x-msvideo", category="video", filename=filename)


class TestComputeSampleIndices:
    def test_spans_first_to_last_frame(self):
        indices = compute_sample_indices(100, 10)
        assert len(indices) == 10
        assert indices[0] == 0
        assert indices[-1] == 99

    def test_strictly_increasing(self):
        for frame_count in (11, 12, 37, 250, 1001):
            for target in (2, 5, 10):
                indices = compute_sample_indices(frame_count, target)
                assert all(b > a for a, b in zip(indices, indices[1:])), (frame_count, target)

    def test_short_video_returns_every_frame(self):
        assert compute_sample_indices(4, 10) == [0, 1, 2, 3]

    def test_single_target_is_first_frame(self):
        assert compute_sample_indices(50, 1) == [0]

    def test_empty_inputs(self):
        assert compute_sample_indices(0, 10) == []
        assert compute_sample_indices(10, 0) == []


class TestVideoSampling:
    def test_ten_second_video_yields_ten_ordered_frames(self, ten_second_video):
        frames = FrameSampler().sample(_video_asset(ten_second_video), 10)

        assert len(frames) == 10
        assert [f.index for f in frames] == list(range(10))
        timestamps = [f.timestamp for f in frames]
        assert timestamps[0] == pytest.approx(0.0)
        assert timestamps[-1] == pytest.approx(9.9, abs=0.11)
        assert all(b > a for a, b in zip(timestamps, timestamps[1:]))

    def test_frames_are_png(self, ten_second_video):
        frames = FrameSampler().sample(_video_asset(ten_second_video), 3)
        for frame in frames:
            assert frame.mime_type == "image/png"
            assert frame.data.startswith(b"\x89PNG")

    def test_short_video_returns_all_frames(self, tmp_path):
        data = write_video(tmp_path / "short.avi", frame_count=4).read_bytes()
        frames = FrameSampler().sample(_video_asset(data), 10)
        assert len(frames) == 4

    def test_frames_downscaled_to_width(self, tmp_path):
        data = write_video(tmp_path / "wide.avi", frame_count=5, size=(320, 240)).read_bytes()
        frames = FrameSampler(frame_width=160).sample(_video_asset(data), 2)
        image = cv2.imdecode(np.frombuffer(frames[0].data, dtype=np.uint8), cv2.IMREAD_COLOR)
        assert image.shape[1] == 160
        assert image.shape[0] == 120

    def test_small_frames_not_upscaled(self, tmp_path):
        data = write_video(tmp_path / "small.avi", frame_count=3, size=(64, 48)).read_bytes()
        frames = FrameSampler(frame_width=640).sample(_video_asset(data), 1)
        image = cv2.imdecode(np.frombuffer(frames[0].data, dtype=np.uint8), cv2.IMREAD_COLOR)
        assert image.shape[1] == 64

    def test_corrupt_video_raises(self):
        with pytest.raises((UnsupportedMediaError, EmptyMediaError)):
            FrameSampler().sample(_video_asset(b"not a video at all" * 64), 10)

    def test_temporary_files_removed(self, tmp_path, monkeypatch, ten_second_video):
        spool = tmp_path / "spool"
        spool.mkdir()
        monkeypatch.setattr(tempfile, "tempdir", str(spool))

        FrameSampler().sample(_video_asset(ten_second_video), 5)
        assert list(spool.iterdir()) == []

        with pytest.raises((UnsupportedMediaError, EmptyMediaError)):
            FrameSampler().sample(_video_asset(b"garbage" * 100), 5)
        assert list(spool.iterdir()) == []


class TestImageSampling:
    def test_png_passes_through(self):
        data = encode_image(".png")
        asset = MediaAsset(data=data, mime_type="image/png", category="image", filename="still.png")

        frames = FrameSampler().sample(asset, 10)

        assert len(frames) == 1
        assert frames[0].data == data
        assert frames[0].mime_type == "image/png"
        assert frames[0].timestamp == 0.0

    def test_jpeg_passes_through(self):
        data = encode_image(".jpg")
        asset = MediaAsset(data=data, mime_type="image/jpeg", category="image", filename="still.jpg")
        frames = FrameSampler().sample(asset, 10)
        assert frames[0].mime_type == "image/jpeg"
        assert frames[0].data == data

    def test_other_formats_reencoded_as_png(self):
        data = encode_image(".bmp")
        asset = MediaAsset(data=data, mime_type="image/bmp", category="image", filename="still.bmp")
        frames = FrameSampler().sample(asset, 10)
        assert frames[0].mime_type == "image/png"
        assert frames[0].data.startswith(b"\x89PNG")

    def test_undecodable_image_raises(self):
        asset = MediaAsset(data=b"\x00" * 64, mime_type="image/png", category="image", filename="bad.png")
        with pytest.raises(UnsupportedMediaError):
            FrameSampler().sample(asset, 1)


class TestReadInfo:
    def test_video_resolution_and_duration(self, ten_second_video):
        info = FrameSampler().read_info(_video_asset(ten_second_video))

        assert info.category == "video"
        assert (info.width, info.height) == (64, 48)
        assert info.frame_count == 100
        assert info.fps == pytest.approx(10.0)
        assert info.duration == pytest.approx(10.0)

    def test_image_resolution(self):
        asset = MediaAsset(data=encode_image(".png", (32, 24)), mime_type="image/png", category="image")
        info = FrameSampler().read_info(asset)
        assert (info.category, info.width, info.height, info.duration) == ("image", 32, 24, 0.0)

    def test_corrupt_video_raises(self):
        with pytest.raises(UnsupportedMediaError):
            FrameSampler().read_info(_video_asset(b"definitely not a video"))
