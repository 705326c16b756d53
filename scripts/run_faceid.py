"""
FaceID Command Line Tool

Enroll or verify an identity with the webcam (or a folder of images),
using the record store configured in config.yaml.

Usage:
    # Enroll from the default webcam
    python scripts/run_faceid.py enroll alice

    # Verify from the webcam
    python scripts/run_faceid.py verify alice

    # Replay a folder of JPEG/PNG frames instead of the camera
    python scripts/run_faceid.py verify alice --frames-dir storage/sample_frames

    # Inspect or remove records
    python scripts/run_faceid.py list
    python scripts/run_faceid.py delete alice
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import cv2

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.capture_session import CaptureProgress, CaptureState
from core.config import get_logging_config
from core.enrollment import get_enrollment_controller
from core.frame import Frame, FrameSource, SequenceFrameSource
from core.record_store import get_record_store
from core.verification import get_verification_controller


class CameraFrameSource(FrameSource):
    """Reads mirrored RGB frames from an OpenCV VideoCapture device."""

    def __init__(self, device: int = 0, width: int = 640, height: int = 480):
        self.cap = cv2.VideoCapture(device)
        if not self.cap.isOpened():
            raise RuntimeError(f"Could not open camera {device}")
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

    def next_frame(self) -> Optional[Frame]:
        ret, image = self.cap.read()
        if not ret:
            return None
        return Frame.from_bgr(cv2.flip(image, 1))

    def close(self) -> None:
        self.cap.release()


def load_frames_dir(frames_dir: Path, hold: int) -> SequenceFrameSource:
    """Load every image in a directory (sorted by name) as a frame source."""
    paths = sorted(
        p for p in frames_dir.iterdir()
        if p.suffix.lower() in (".jpg", ".jpeg", ".png")
    )
    frames = []
    for path in paths:
        image = cv2.imread(str(path))
        if image is None:
            print(f"  Skipping unreadable image: {path.name}")
            continue
        frames.append(Frame.from_bgr(image))
    print(f"Loaded {len(frames)} frames from {frames_dir}")
    return SequenceFrameSource(frames, hold=hold)


def print_progress(progress: CaptureProgress) -> None:
    if progress.state is CaptureState.CAPTURING and progress.countdown > 0:
        print(f"  Hold still... {progress.countdown}")
    elif progress.state is CaptureState.SCANNING and progress.attempts % 10 == 0:
        hint = "face detected" if progress.face_detected else "looking for a face"
        print(f"  [{progress.captured}/{progress.target}] {hint} "
              f"(attempt {progress.attempts}/{progress.max_attempts})")


def print_banner(text: str, char: str = "="):
    line = char * 60
    print(f"\n{line}")
    print(text)
    print(line)


async def run_capture(args, source: FrameSource) -> int:
    store = get_record_store()

    if args.command == "enroll":
        controller = get_enrollment_controller(store)
        outcome = await controller.enroll(args.identity, source, on_progress=print_progress)
        if outcome.ok:
            print_banner(f"Enrolled {args.identity} with {outcome.value.n_descriptors} samples")
            return 0
    else:
        controller = get_verification_controller(store)
        outcome = await controller.verify(args.identity, source, on_progress=print_progress)
        result = outcome.value
        if result is not None:
            print(f"  max similarity:     {result.max_similarity:.3f}")
            print(f"  average similarity: {result.average_similarity:.3f}")
            print(f"  good matches:       {result.good_match_count}/{result.required_good_matches}")
        if outcome.ok:
            print_banner(f"Verified: {args.identity}")
            return 0

    print_banner(f"FAILED ({outcome.failure_kind.value}): {outcome.failure.message}")
    return 1


def main():
    parser = argparse.ArgumentParser(
        description="FaceID enrollment and verification",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name in ("enroll", "verify"):
        sub = subparsers.add_parser(name, help=f"{name.capitalize()} an identity")
        sub.add_argument("identity", help="Identity key")
        sub.add_argument(
            "--camera", type=int, default=0,
            help="Camera device index (default: 0)"
        )
        sub.add_argument(
            "--frames-dir", type=str, default=None,
            help="Replay images from this directory instead of the camera"
        )
        sub.add_argument(
            "--hold", type=int, default=2,
            help="Polls served per image when replaying a directory (default: 2)"
        )

    subparsers.add_parser("list", help="List enrollment records")
    delete_parser = subparsers.add_parser("delete", help="Delete an enrollment record")
    delete_parser.add_argument("identity", help="Identity key")

    args = parser.parse_args()

    logging_config = get_logging_config()
    logging.basicConfig(
        level=getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO),
        format=logging_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
    )

    if args.command == "list":
        records = get_record_store().list_records()
        print(f"{len(records)} record(s)")
        for r in records:
            print(f"  {r['identity']}: {r['n_descriptors']} descriptors, "
                  f"enrolled {r['created_at']}, last used {r['last_used_at']}")
        return 0

    if args.command == "delete":
        deleted = get_record_store().delete(args.identity)
        print(f"Deleted {args.identity}" if deleted else f"No record for {args.identity}")
        return 0 if deleted else 1

    print_banner(f"FaceID {args.command}: {args.identity}")

    if args.frames_dir:
        return asyncio.run(run_capture(args, load_frames_dir(Path(args.frames_dir), args.hold)))

    camera = CameraFrameSource(args.camera)
    print("Look at the camera and keep your face centred...")
    try:
        return asyncio.run(run_capture(args, camera))
    except KeyboardInterrupt:
        print("\nCancelled.")
        return 1
    finally:
        camera.close()


if __name__ == "__main__":
    sys.exit(main())
