"""
Frame Module

Frames are the unit of input for the capture engine. A frame wraps a pixel
buffer in RGB or RGBA channel order together with its capture timestamp.
Frames are ephemeral: the capture session reads them once per polling tick
and drops them.

Frame acquisition (camera, uploaded images) happens behind the FrameSource
interface so the session can be driven by a webcam, an HTTP upload or a
scripted test sequence alike.

Usage:
    from core.frame import Frame, SequenceFrameSource

    source = SequenceFrameSource([Frame(pixels=rgb_array)])
    frame = source.next_frame()
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import cv2
import numpy as np


@dataclass
class Frame:
    """
    A single camera frame.

    Attributes:
        pixels: Image buffer, shape (H, W, 3) for RGB or (H, W, 4) for RGBA,
                dtype uint8.
        timestamp: Unix timestamp when the frame was captured.
    """

    pixels: np.ndarray
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] not in (3, 4):
            raise ValueError(
                f"Frame pixels must be (H, W, 3) or (H, W, 4), got {self.pixels.shape}"
            )
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Frame pixels must be uint8, got {self.pixels.dtype}")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def rgb(self) -> np.ndarray:
        """RGB view of the buffer (alpha channel dropped)."""
        return self.pixels[:, :, :3]

    @classmethod
    def from_bgr(cls, image: np.ndarray, timestamp: Optional[float] = None) -> "Frame":
        """
        Build a frame from an OpenCV BGR image.

        Args:
            image: BGR image as returned by cv2.imread / VideoCapture.read.
            timestamp: Capture time; defaults to now.
        """
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        if timestamp is None:
            timestamp = time.time()
        return cls(pixels=rgb, timestamp=timestamp)


class FrameSource(ABC):
    """
    Abstract source of camera frames.

    Implementations must not block for long: the capture session polls
    next_frame() on every Scanning tick and treats None as "no frame yet".
    """

    @abstractmethod
    def next_frame(self) -> Optional[Frame]:
        """Return the latest available frame, or None if none is available."""
        pass


class SequenceFrameSource(FrameSource):
    """
    Plays back a fixed list of frames.

    Each frame is served `hold` consecutive times before moving to the next
    one. Once the list is exhausted the source yields None (or keeps repeating
    the final frame when `loop_last` is set).

    Used by the HTTP API (uploaded frames) and by the test-suite.
    """

    def __init__(self, frames: Sequence[Frame], hold: int = 1, loop_last: bool = False):
        if hold < 1:
            raise ValueError(f"hold must be >= 1, got {hold}")
        self._frames: List[Frame] = list(frames)
        self._hold = hold
        self._loop_last = loop_last
        self._served = 0

    @property
    def served(self) -> int:
        """Number of next_frame() calls answered so far."""
        return self._served

    def next_frame(self) -> Optional[Frame]:
        index = self._served // self._hold
        self._served += 1

        if index < len(self._frames):
            return self._frames[index]
        if self._loop_last and self._frames:
            return self._frames[-1]
        return None
