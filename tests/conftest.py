"""
Shared fixtures for the FaceID test-suite.

The synthetic "face" is a 640x480 frame of warm vertical stripes (period 8,
both stripe colours pass the skin rules) with two dark 15x15 patches in the
upper half of the centre square standing in for eyes. It passes both the
quality gate and the secondary capture check. Swapping the stripe phase
gives a frame that still passes the gate but yields a different descriptor.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.frame import Frame

STRIPE_A = (200, 150, 110)
STRIPE_B = (120, 80, 60)
EYE_COLOR = (20, 20, 20)


def make_face_pixels(width: int = 640, height: int = 480, shifted: bool = False) -> np.ndarray:
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    xs = np.arange(width)
    first_half = (xs % 8) < 4
    if shifted:
        first_half = ~first_half
    pixels[:, first_half] = STRIPE_A
    pixels[:, ~first_half] = STRIPE_B

    # Eye patches, above the vertical centre of the frame
    pixels[200:215, 285:300] = EYE_COLOR
    pixels[200:215, 340:355] = EYE_COLOR
    return pixels


def make_uniform_pixels(value, width: int = 640, height: int = 480) -> np.ndarray:
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[:, :] = value
    return pixels


@pytest.fixture
def face_frame():
    return Frame(pixels=make_face_pixels())


@pytest.fixture
def other_face_frame():
    return Frame(pixels=make_face_pixels(shifted=True))


@pytest.fixture
def dark_frame():
    return Frame(pixels=make_uniform_pixels((15, 15, 15)))


@pytest.fixture
def bright_frame():
    return Frame(pixels=make_uniform_pixels((250, 250, 250)))


@pytest.fixture
def gray_frame():
    return Frame(pixels=make_uniform_pixels((128, 128, 128)))


async def no_sleep(_seconds: float) -> None:
    """Drop-in replacement for asyncio.sleep that returns immediately."""
    return None
