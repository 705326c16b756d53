"""
Tests for the QualityGate and CaptureQualityCheck.

This test suite verifies:
- Exposure rejections (too dark / too bright)
- Presence heuristics on a synthetic face frame
- Rejection of frames without skin, eyes or contrast
- The secondary capture check used by enrollment
- Config overrides

Run with: pytest tests/test_quality_gate.py -v
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.frame import Frame
from core.quality_gate import (
    CaptureQualityCheck,
    QualityGate,
    RejectionReason,
    sample_brightness,
)
from conftest import make_face_pixels, make_uniform_pixels


class TestSampleBrightness:
    """Tests for the strided brightness sampler."""

    def test_uniform_image(self):
        rgb = make_uniform_pixels((30, 60, 90), width=8, height=2)
        values = sample_brightness(rgb, 4)
        assert len(values) == 4
        assert np.allclose(values, 60.0)

    def test_raster_order_stride(self):
        """Every 4th pixel in raster order, starting with the first."""
        rgb = np.zeros((1, 8, 3), dtype=np.uint8)
        rgb[0, 0] = (30, 30, 30)
        rgb[0, 4] = (90, 90, 90)
        rgb[0, 1] = (255, 255, 255)  # not sampled
        values = sample_brightness(rgb, 4)
        assert values.tolist() == [30.0, 90.0]


class TestQualityGateExposure:
    """Tests for luminance-based rejections."""

    @pytest.fixture
    def gate(self):
        return QualityGate()

    def test_dark_frame_rejected(self, gate, dark_frame):
        report = gate.evaluate(dark_frame)
        assert not report.accepted
        assert report.reason == RejectionReason.TOO_DARK
        assert report.luminance == pytest.approx(15.0)

    def test_bright_frame_rejected(self, gate, bright_frame):
        report = gate.evaluate(bright_frame)
        assert not report.accepted
        assert report.reason == RejectionReason.TOO_BRIGHT

    def test_luminance_boundaries_are_exclusive(self, gate):
        """Exactly 20 and exactly 240 are not outside the hard limits."""
        low = gate.evaluate(Frame(pixels=make_uniform_pixels((20, 20, 20))))
        high = gate.evaluate(Frame(pixels=make_uniform_pixels((240, 240, 240))))
        assert low.reason == RejectionReason.LOW_PRESENCE_CONFIDENCE
        assert high.reason == RejectionReason.LOW_PRESENCE_CONFIDENCE


class TestQualityGatePresence:
    """Tests for the centre-square presence heuristics."""

    @pytest.fixture
    def gate(self):
        return QualityGate()

    def test_synthetic_face_accepted(self, gate, face_frame):
        report = gate.evaluate(face_frame)

        assert report.accepted
        assert report.reason is None
        assert 40 < report.luminance < 200
        assert report.skin_ratio > 0.9
        assert report.eye_ratio == pytest.approx(450 / 3600)
        assert report.contrast_ratio > 0.9
        assert report.shape_ratio > 0.85

    def test_phase_shifted_face_accepted(self, gate, other_face_frame):
        assert gate.evaluate(other_face_frame).accepted

    def test_gray_frame_low_presence(self, gate, gray_frame):
        """Neutral grey passes the dark-skin rule but has no eyes or contrast."""
        report = gate.evaluate(gray_frame)
        assert not report.accepted
        assert report.reason == RejectionReason.LOW_PRESENCE_CONFIDENCE
        assert report.skin_ratio == 1.0
        assert report.eye_ratio == 0.0
        assert report.contrast_ratio == 0.0

    def test_face_without_eyes_rejected(self, gate):
        pixels = make_face_pixels()
        # Patch both eyes with stripes from columns left of the eyes, same phase
        pixels[200:215, 285:300] = pixels[200:215, 261:276]
        pixels[200:215, 340:355] = pixels[200:215, 260:275]
        report = gate.evaluate(Frame(pixels=pixels))

        assert not report.accepted
        assert report.eye_ratio == 0.0
        assert report.reason == RejectionReason.LOW_PRESENCE_CONFIDENCE

    def test_flat_skin_rejected_for_contrast(self, gate):
        pixels = make_uniform_pixels((200, 150, 110))
        pixels[200:215, 285:300] = (20, 20, 20)
        pixels[200:215, 340:355] = (20, 20, 20)
        report = gate.evaluate(Frame(pixels=pixels))

        assert report.skin_ratio > 0.9
        assert report.contrast_ratio < 0.15
        assert not report.accepted

    def test_rgba_frame_accepted(self, gate):
        rgb = make_face_pixels()
        alpha = np.full(rgb.shape[:2] + (1,), 255, dtype=np.uint8)
        frame = Frame(pixels=np.concatenate([rgb, alpha], axis=2))
        assert gate.evaluate(frame).accepted

    def test_deterministic(self, gate, face_frame):
        assert gate.evaluate(face_frame) == gate.evaluate(face_frame)

    def test_config_override(self, face_frame):
        """A stricter skin threshold turns the same frame into a rejection."""
        gate = QualityGate({"min_skin_ratio": 0.99})
        report = gate.evaluate(face_frame)
        assert not report.accepted
        assert report.reason == RejectionReason.LOW_PRESENCE_CONFIDENCE


class TestCaptureQualityCheck:
    """Tests for the secondary per-capture check."""

    def test_face_passes(self, face_frame):
        quality = CaptureQualityCheck().check(face_frame)
        assert quality.passed
        assert quality.brightness == pytest.approx(120.0, abs=1.0)
        assert quality.contrast > 20

    def test_dark_frame_fails(self, dark_frame):
        quality = CaptureQualityCheck().check(dark_frame)
        assert not quality.passed

    def test_gray_frame_fails_on_contrast(self, gray_frame):
        """Gray has zero channel spread."""
        quality = CaptureQualityCheck().check(gray_frame)
        assert quality.brightness == pytest.approx(128.0)
        assert quality.contrast == 0.0
        assert not quality.passed
