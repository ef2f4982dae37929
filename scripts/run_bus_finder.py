"""Headless bus finder: watch a video source until the requested bus appears.

Example:
    python -m scripts.run_bus_finder --video bus_stop.mp4 --bus 50 --whitelist 50,34A,382W
"""

import argparse
import asyncio
import logging
import os

from dotenv import load_dotenv

# Configure FFmpeg for error-tolerant RTSP decoding
# Must be set before importing cv2
os.environ.setdefault(
    "OPENCV_FFMPEG_CAPTURE_OPTIONS",
    "rtsp_transport;tcp|err_detect;ignore_err|ec;guess_mvs",
)

load_dotenv()

from config.pipeline_config import PipelineConfig  # noqa: E402
from services.bus_finder import BusFinder  # noqa: E402
from services.profiler import profiler  # noqa: E402

logger = logging.getLogger(__name__)


class ConsoleChannel:
    """Prints outbound responses instead of sending them to a client."""

    def __init__(self):
        self.responses = []

    async def send_response(self, result: str, request_id=None):
        self.responses.append(result)
        print(f"[RESPONSE] {result} (request {request_id})")


def _split(values):
    items = []
    for value in values or []:
        items.extend(v.strip() for v in value.split(",") if v.strip())
    return items


async def run(args) -> int:
    channel = ConsoleChannel()
    bus_finder = BusFinder.from_config(
        channel=channel,
        video_source=args.video,
        model_path=args.model,
    )
    if args.save_crops:
        bus_finder.orchestrator.save_crops = True
    if args.max_frames:
        bus_finder.orchestrator.max_frames = args.max_frames

    try:
        if not await bus_finder.initialize():
            print("[ERROR] Detector not ready, see log for details")
            return 2

        session = await bus_finder.orchestrator.start_session(
            _split(args.bus), whitelist=_split(args.whitelist) or None
        )
        if session is None:
            return 2

        await bus_finder.orchestrator.wait_until_idle()
        matched = bus_finder.orchestrator.last_match
        if matched:
            print(f"[INFO] Bus {matched} found")
            return 0
        print("[INFO] Bus not found")
        return 1
    finally:
        await bus_finder.dispose()
        profiler.print_report()


def main():
    parser = argparse.ArgumentParser(description="Find a bus by its route number in a video")
    parser.add_argument("--video", default=None, help="Camera index, file path or RTSP URL")
    parser.add_argument("--bus", action="append", required=True, help="Bus number(s) to look for")
    parser.add_argument(
        "--whitelist", action="append", help="Valid route numbers (comma separated)"
    )
    parser.add_argument("--model", default=None, help="Path to the .tflite detector")
    parser.add_argument("--max-frames", type=int, default=None, help="Stop after N processed frames")
    parser.add_argument("--save-crops", action="store_true", help="Save every crop sent to OCR")
    parser.add_argument("--config", action="store_true", help="Print configuration and exit")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.config:
        PipelineConfig.print_summary()
        return

    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n[INFO] Keyboard interrupt, shutting down...")
        exit_code = 130
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
