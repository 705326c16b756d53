"""
Tests for Frame and SequenceFrameSource.

This test suite verifies:
- Frame buffer validation (shape and dtype)
- BGR conversion
- Playback with hold and loop_last

Run with: pytest tests/test_frame.py -v
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.frame import Frame, SequenceFrameSource
from conftest import make_face_pixels, make_uniform_pixels


class TestFrame:
    """Tests for Frame validation."""

    def test_rgb_and_rgba_accepted(self):
        rgb = make_uniform_pixels((10, 20, 30), width=4, height=3)
        rgba = np.concatenate([rgb, np.full((3, 4, 1), 255, dtype=np.uint8)], axis=2)

        assert Frame(pixels=rgb).width == 4
        assert Frame(pixels=rgb).height == 3
        assert Frame(pixels=rgba).rgb.shape == (3, 4, 3)

    def test_bad_shape_rejected(self):
        with pytest.raises(ValueError):
            Frame(pixels=np.zeros((4, 4), dtype=np.uint8))
        with pytest.raises(ValueError):
            Frame(pixels=np.zeros((4, 4, 2), dtype=np.uint8))

    def test_float_buffer_rejected(self):
        """A normalised float image must not be silently turned black."""
        pixels = make_face_pixels().astype(np.float64) / 255.0
        with pytest.raises(ValueError, match="uint8"):
            Frame(pixels=pixels)

    def test_from_bgr_swaps_channels(self):
        bgr = make_uniform_pixels((30, 20, 10), width=2, height=2)
        frame = Frame.from_bgr(bgr, timestamp=12.5)

        assert tuple(frame.pixels[0, 0]) == (10, 20, 30)
        assert frame.timestamp == 12.5


class TestSequenceFrameSource:
    """Tests for list playback."""

    @pytest.fixture
    def frames(self):
        return [
            Frame(pixels=make_uniform_pixels((i, i, i), width=2, height=2))
            for i in (1, 2)
        ]

    def test_hold_serves_each_frame_repeatedly(self, frames):
        source = SequenceFrameSource(frames, hold=2)
        served = [source.next_frame() for _ in range(5)]

        expected = [frames[0], frames[0], frames[1], frames[1], None]
        assert all(got is want for got, want in zip(served, expected))
        assert source.served == 5

    def test_loop_last_repeats_final_frame(self, frames):
        source = SequenceFrameSource(frames, loop_last=True)
        served = [source.next_frame() for _ in range(4)]

        expected = [frames[0], frames[1], frames[1], frames[1]]
        assert all(got is want for got, want in zip(served, expected))

    def test_empty_source_yields_none(self):
        assert SequenceFrameSource([], loop_last=True).next_frame() is None

    def test_invalid_hold(self, frames):
        with pytest.raises(ValueError):
            SequenceFrameSource(frames, hold=0)
