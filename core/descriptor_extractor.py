"""
Descriptor Extraction Module

Turns a captured frame into a fixed-length numeric feature vector
("descriptor"). The extractor is pure and deterministic: the same pixel
buffer always yields exactly the same vector.

Pipeline:
    1. Resize the frame to a 128x128 RGB canvas (bilinear).
    2. Sample four fixed regions (eyes, nose, mouth, center) on a stride-4
       grid. Each sampled pixel contributes 7 values:
       r, g, b, brightness, |r-g|, |g-b|, |r-b| (channels in 0-1).
    3. After each region, append its mean, variance, max and min.
    4. After all regions, append mean, variance, max and min of the
       brightness of every 4th canvas pixel.

With the default regions the descriptor has DESCRIPTOR_LENGTH = 3492 values.

Usage:
    from core.descriptor_extractor import DescriptorExtractor

    extractor = DescriptorExtractor()
    descriptor = extractor.extract(frame)   # np.ndarray, shape (3492,)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import cv2
import numpy as np

from core.frame import Frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaceRegion:
    """A fixed rectangle on the canonical canvas."""

    name: str
    x: int
    y: int
    w: int
    h: int


# Region bounds are constants on the 128x128 canvas, not derived from the image
FACE_REGIONS: List[FaceRegion] = [
    FaceRegion("eyes", 32, 24, 64, 20),
    FaceRegion("nose", 48, 56, 32, 16),
    FaceRegion("mouth", 32, 80, 64, 24),
    FaceRegion("center", 16, 40, 96, 48),
]

FEATURES_PER_PIXEL = 7
AGGREGATES_PER_REGION = 4
GLOBAL_AGGREGATES = 4


def _region_axes(region: FaceRegion, stride: int, canvas_size: int):
    xs = np.arange(region.x, region.x + region.w, stride)
    ys = np.arange(region.y, region.y + region.h, stride)
    return xs[xs < canvas_size], ys[ys < canvas_size]


def descriptor_length(
    regions: Sequence[FaceRegion] = FACE_REGIONS,
    stride: int = 4,
    canvas_size: int = 128,
) -> int:
    """Length of descriptors produced for the given layout."""
    length = GLOBAL_AGGREGATES
    for region in regions:
        xs, ys = _region_axes(region, stride, canvas_size)
        n_pixels = len(xs) * len(ys)
        if n_pixels > 0:
            length += n_pixels * FEATURES_PER_PIXEL + AGGREGATES_PER_REGION
    return length


DESCRIPTOR_LENGTH = descriptor_length()


def _aggregates(values: np.ndarray) -> np.ndarray:
    """mean, population variance, max, min."""
    mean = values.mean()
    variance = ((values - mean) ** 2).mean()
    return np.array([mean, variance, values.max(), values.min()], dtype=np.float64)


class DescriptorExtractor:
    """
    Extracts fixed-length descriptors from frames.

    Attributes:
        canvas_size: Side of the square canvas frames are resized to.
        stride: Sampling stride inside each region.
        global_stride: Pixel stride for the global brightness statistics.
        regions: Region layout (defaults to FACE_REGIONS).
        descriptor_length: Length every produced descriptor must have.
    """

    CANVAS_SIZE = 128
    STRIDE = 4
    GLOBAL_STRIDE = 4

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        regions: Sequence[FaceRegion] = FACE_REGIONS,
    ):
        if config is None:
            config = {}
        self.canvas_size = int(config.get("canvas_size", self.CANVAS_SIZE))
        self.stride = int(config.get("stride", self.STRIDE))
        self.global_stride = int(config.get("global_stride", self.GLOBAL_STRIDE))
        self.regions = list(regions)
        self.descriptor_length = descriptor_length(self.regions, self.stride, self.canvas_size)

        logger.debug(
            f"DescriptorExtractor initialized: canvas={self.canvas_size}, "
            f"stride={self.stride}, length={self.descriptor_length}"
        )

    def to_canvas(self, frame: Frame) -> np.ndarray:
        """Resize a frame to the canonical canvas, channels scaled to 0-1."""
        resized = cv2.resize(
            np.ascontiguousarray(frame.rgb),
            (self.canvas_size, self.canvas_size),
            interpolation=cv2.INTER_LINEAR,
        )
        return resized.astype(np.float64) / 255.0

    def extract(self, frame: Frame) -> np.ndarray:
        """
        Compute the descriptor of a frame.

        Args:
            frame: Source frame (any resolution).

        Returns:
            1-D float64 array of length self.descriptor_length.
        """
        canvas = self.to_canvas(frame)
        parts: List[np.ndarray] = []

        for region in self.regions:
            xs, ys = _region_axes(region, self.stride, self.canvas_size)
            if len(xs) == 0 or len(ys) == 0:
                continue

            # Row-major: y outer, x inner
            pixels = canvas[np.ix_(ys, xs)]
            r = pixels[:, :, 0]
            g = pixels[:, :, 1]
            b = pixels[:, :, 2]

            features = np.stack(
                [
                    r,
                    g,
                    b,
                    (r + g + b) / 3,
                    np.abs(r - g),
                    np.abs(g - b),
                    np.abs(r - b),
                ],
                axis=-1,
            ).reshape(-1)

            parts.append(features)
            parts.append(_aggregates(features))

        flat = canvas.reshape(-1, 3)[::self.global_stride]
        global_brightness = flat.sum(axis=1) / 3
        parts.append(_aggregates(global_brightness))

        descriptor = np.concatenate(parts)

        if descriptor.shape != (self.descriptor_length,):
            raise ValueError(
                f"Descriptor must have length {self.descriptor_length}, got {descriptor.shape}"
            )

        return descriptor
