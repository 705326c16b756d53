"""
Quality Gate Module

This module decides whether a camera frame is good enough to be used for
face enrollment or verification. It is a heuristic presence detector, not a
face detector: it looks for plausible exposure, skin-coloured pixels, dark
"eye socket" pixels and local contrast inside a centred square.

The decision rule:
    1. Mean luminance over every Nth pixel. Reject TOO_DARK below 20 and
       TOO_BRIGHT above 240.
    2. Inside the centre square (half-side = min(w, h) / 8) compute
       skin_ratio, eye_ratio, contrast_ratio and shape_ratio.
    3. Accept only if all four ratios clear their thresholds AND the
       luminance sits inside the stricter (40, 200) band.

A second, cheaper check (CaptureQualityCheck) is applied by enrollment to
the frame actually captured after the countdown.

Usage:
    from core.quality_gate import QualityGate

    gate = QualityGate(config)
    report = gate.evaluate(frame)
    if report.accepted:
        ...
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

from core.frame import Frame

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    """Why the quality gate rejected a frame."""

    TOO_DARK = "too_dark"
    TOO_BRIGHT = "too_bright"
    LOW_PRESENCE_CONFIDENCE = "low_presence_confidence"


@dataclass
class QualityReport:
    """
    Result of evaluating a single frame.

    Attributes:
        accepted: True if the frame may be captured.
        reason: Rejection reason when accepted is False.
        luminance: Mean luminance on a 0-255 scale.
        skin_ratio: Fraction of centre-square pixels classified as skin.
        eye_ratio: Dark pixel density in the upper half of the square.
        contrast_ratio: Fraction of pixels with a strong local brightness step.
        shape_ratio: Fraction of pixels inside the implied face oval.
    """

    accepted: bool
    reason: Optional[RejectionReason]
    luminance: float
    skin_ratio: float = 0.0
    eye_ratio: float = 0.0
    contrast_ratio: float = 0.0
    shape_ratio: float = 0.0


def sample_brightness(rgb: np.ndarray, stride: int) -> np.ndarray:
    """Brightness ((r+g+b)/3) of every `stride`-th pixel in raster order."""
    flat = rgb.reshape(-1, 3)[::stride].astype(np.float64)
    return flat.sum(axis=1) / 3.0


class QualityGate:
    """
    Accepts or rejects frames before a descriptor is extracted.

    Thresholds are class constants and can be overridden through the
    `quality_gate` config section.
    """

    LUMINANCE_STRIDE = 4
    MIN_LUMINANCE = 20.0
    MAX_LUMINANCE = 240.0
    GOOD_LUMINANCE_LOW = 40.0
    GOOD_LUMINANCE_HIGH = 200.0
    REGION_DIVISOR = 8
    MIN_SKIN_RATIO = 0.25
    MIN_EYE_RATIO = 0.05
    MIN_CONTRAST_RATIO = 0.15
    MIN_SHAPE_RATIO = 0.6
    SHAPE_RADIUS_FACTOR = 0.8
    DARK_PIXEL_THRESHOLD = 50.0
    CONTRAST_PIXEL_OFFSET = 4
    CONTRAST_THRESHOLD = 60

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the QualityGate.

        Args:
            config: Optional dictionary overriding any of:
                - luminance_stride, min_luminance, max_luminance
                - good_luminance_low, good_luminance_high
                - region_divisor
                - min_skin_ratio, min_eye_ratio, min_contrast_ratio, min_shape_ratio
                - shape_radius_factor, dark_pixel_threshold
                - contrast_pixel_offset, contrast_threshold
        """
        if config is None:
            config = {}
        self.luminance_stride = int(config.get("luminance_stride", self.LUMINANCE_STRIDE))
        self.min_luminance = config.get("min_luminance", self.MIN_LUMINANCE)
        self.max_luminance = config.get("max_luminance", self.MAX_LUMINANCE)
        self.good_luminance_low = config.get("good_luminance_low", self.GOOD_LUMINANCE_LOW)
        self.good_luminance_high = config.get("good_luminance_high", self.GOOD_LUMINANCE_HIGH)
        self.region_divisor = config.get("region_divisor", self.REGION_DIVISOR)
        self.min_skin_ratio = config.get("min_skin_ratio", self.MIN_SKIN_RATIO)
        self.min_eye_ratio = config.get("min_eye_ratio", self.MIN_EYE_RATIO)
        self.min_contrast_ratio = config.get("min_contrast_ratio", self.MIN_CONTRAST_RATIO)
        self.min_shape_ratio = config.get("min_shape_ratio", self.MIN_SHAPE_RATIO)
        self.shape_radius_factor = config.get("shape_radius_factor", self.SHAPE_RADIUS_FACTOR)
        self.dark_pixel_threshold = config.get("dark_pixel_threshold", self.DARK_PIXEL_THRESHOLD)
        self.contrast_pixel_offset = int(config.get("contrast_pixel_offset", self.CONTRAST_PIXEL_OFFSET))
        self.contrast_threshold = config.get("contrast_threshold", self.CONTRAST_THRESHOLD)

    def evaluate(self, frame: Frame) -> QualityReport:
        """
        Score a frame and decide whether it is usable.

        Args:
            frame: The frame to evaluate.

        Returns:
            QualityReport with the decision and the metrics behind it.
        """
        rgb = frame.rgb

        # Step 1: exposure
        luminance = float(sample_brightness(rgb, self.luminance_stride).mean())

        if luminance < self.min_luminance:
            logger.debug(f"Too dark: luminance={luminance:.1f}")
            return QualityReport(False, RejectionReason.TOO_DARK, luminance)

        if luminance > self.max_luminance:
            logger.debug(f"Too bright: luminance={luminance:.1f}")
            return QualityReport(False, RejectionReason.TOO_BRIGHT, luminance)

        # Steps 2-4: centre square analysis
        skin_ratio, eye_ratio, contrast_ratio, shape_ratio = self._analyze_center(rgb)

        has_skin = skin_ratio > self.min_skin_ratio
        has_eyes = eye_ratio > self.min_eye_ratio
        has_contrast = contrast_ratio > self.min_contrast_ratio
        has_shape = shape_ratio > self.min_shape_ratio
        good_lighting = self.good_luminance_low < luminance < self.good_luminance_high

        accepted = has_skin and has_eyes and has_contrast and has_shape and good_lighting

        logger.debug(
            f"Presence check: luminance={luminance:.1f}, skin={skin_ratio:.3f}, "
            f"eyes={eye_ratio:.3f}, contrast={contrast_ratio:.3f}, "
            f"shape={shape_ratio:.3f}, accepted={accepted}"
        )

        return QualityReport(
            accepted=accepted,
            reason=None if accepted else RejectionReason.LOW_PRESENCE_CONFIDENCE,
            luminance=luminance,
            skin_ratio=skin_ratio,
            eye_ratio=eye_ratio,
            contrast_ratio=contrast_ratio,
            shape_ratio=shape_ratio,
        )

    def _center_bounds(self, width: int, height: int):
        """Pixel bounds (x0, x1, y0, y1) and radius of the centre square."""
        center_x = width / 2
        center_y = height / 2
        half_side = min(width, height) / self.region_divisor

        x0 = max(0, int(center_x - half_side))
        x1 = min(width, int(center_x + half_side))
        y0 = max(0, int(center_y - half_side))
        y1 = min(height, int(center_y + half_side))

        return x0, x1, y0, y1, half_side

    def _analyze_center(self, rgb: np.ndarray):
        """
        Compute (skin_ratio, eye_ratio, contrast_ratio, shape_ratio) over the
        centre square.
        """
        height, width = rgb.shape[:2]
        x0, x1, y0, y1, half_side = self._center_bounds(width, height)

        total = (x1 - x0) * (y1 - y0)
        if total <= 0:
            return 0.0, 0.0, 0.0, 0.0

        center_x = width / 2
        center_y = height / 2

        region = rgb[y0:y1, x0:x1].astype(np.int32)
        r = region[:, :, 0]
        g = region[:, :, 1]
        b = region[:, :, 2]
        brightness = (r + g + b) / 3.0

        # Skin tone rules for light, medium and dark skin
        light = (r > 100) & (g > 60) & (b > 40) & (r > g) & (g > b) & (r - g > 15)
        medium = (r > 80) & (g > 50) & (b > 30) & (r > g) & (g >= b) & (r - b > 30)
        dark = (r > 60) & (g > 40) & (b > 25) & (r >= g) & (g >= b) & (brightness > 40)
        skin_pixels = int(np.count_nonzero(light | medium | dark))

        ys, xs = np.mgrid[y0:y1, x0:x1]

        # Dark pixels in the upper half stand in for eye sockets
        eye_dark = int(np.count_nonzero(
            (brightness < self.dark_pixel_threshold) & (ys < center_y)
        ))

        # Local contrast against the pixel a few positions later in raster order
        channel_sums = rgb.reshape(-1, 3).astype(np.int32).sum(axis=1)
        index = (ys * width + xs).ravel()
        neighbour = index + self.contrast_pixel_offset
        valid = neighbour < channel_sums.shape[0]
        diffs = np.abs(channel_sums[index[valid]] - channel_sums[neighbour[valid]])
        contrast_pixels = int(np.count_nonzero(diffs > self.contrast_threshold))

        # Implied oval: measured against the circumradius of the sampled square
        sampling_radius = half_side * math.sqrt(2.0)
        distances = np.sqrt((xs - center_x) ** 2 + (ys - center_y) ** 2)
        shape_pixels = int(np.count_nonzero(
            distances < sampling_radius * self.shape_radius_factor
        ))

        skin_ratio = skin_pixels / total
        eye_ratio = eye_dark / (total / 4)
        contrast_ratio = contrast_pixels / total
        shape_ratio = shape_pixels / total

        return skin_ratio, eye_ratio, contrast_ratio, shape_ratio


@dataclass
class CaptureQuality:
    """Result of the secondary per-capture quality check."""

    passed: bool
    brightness: float
    contrast: float


class CaptureQualityCheck:
    """
    Secondary quality check run on the frame taken after the countdown.

    The frame must have mean brightness within (30, 220) and an average
    per-pixel channel spread (max - min) above 20. Used by enrollment only.
    """

    STRIDE = 4
    MIN_BRIGHTNESS = 30.0
    MAX_BRIGHTNESS = 220.0
    MIN_CONTRAST = 20.0

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}
        self.stride = int(config.get("stride", self.STRIDE))
        self.min_brightness = config.get("min_brightness", self.MIN_BRIGHTNESS)
        self.max_brightness = config.get("max_brightness", self.MAX_BRIGHTNESS)
        self.min_contrast = config.get("min_contrast", self.MIN_CONTRAST)

    def check(self, frame: Frame) -> CaptureQuality:
        sampled = frame.rgb.reshape(-1, 3)[::self.stride].astype(np.float64)

        brightness = float((sampled.sum(axis=1) / 3.0).mean())
        contrast = float((sampled.max(axis=1) - sampled.min(axis=1)).mean())

        passed = (
            self.min_brightness < brightness < self.max_brightness
            and contrast > self.min_contrast
        )

        if not passed:
            logger.info(
                f"Rejecting low quality capture: brightness={brightness:.1f}, "
                f"contrast={contrast:.1f}"
            )

        return CaptureQuality(passed=passed, brightness=brightness, contrast=contrast)
