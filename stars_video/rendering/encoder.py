"""FFmpeg encoder: pipes raw RGB frames into an H.264 MP4.

One subprocess per video. Output is written to a ``.part`` file and moved
into place only after ffmpeg exits cleanly, so a half-written file is
never served.
"""

import contextlib
import logging
import os
import shutil
import subprocess
import tempfile
from typing import Callable, Iterable, List, Optional

from PIL import Image

from stars_video.errors import RenderError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def find_ffmpeg(binary: str = "ffmpeg") -> Optional[str]:
    """Resolve the ffmpeg binary on PATH (or an explicit executable path)."""
    if os.path.isfile(binary) and os.access(binary, os.X_OK):
        return binary
    return shutil.which(binary)


def build_ffmpeg_command(
    ffmpeg_path: str,
    output_path: str,
    width: int,
    height: int,
    fps: int,
    crf: int = 18,
) -> List[str]:
    return [
        ffmpeg_path, "-y", "-loglevel", "error",
        "-f", "rawvideo", "-pix_fmt", "rgb24",
        "-s", f"{width}x{height}", "-r", str(fps),
        "-i", "-",
        "-c:v", "libx264", "-crf", str(crf), "-preset", "veryfast",
        "-pix_fmt", "yuv420p", "-movflags", "+faststart",
        "-f", "mp4", output_path,
    ]


class FFmpegEncoder:
    """Encodes an iterable of equally sized PIL frames."""

    def __init__(self, binary: str = "ffmpeg", crf: int = 18):
        self.binary = binary
        self.crf = crf

    @property
    def available(self) -> bool:
        return find_ffmpeg(self.binary) is not None

    def encode(
        self,
        frames: Iterable[Image.Image],
        output_path: str,
        width: int,
        height: int,
        fps: int,
        total_frames: int = 0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        ffmpeg_path = find_ffmpeg(self.binary)
        if ffmpeg_path is None:
            raise RenderError("FFmpeg is not installed or not in PATH")

        part_path = output_path + ".part"
        cmd = build_ffmpeg_command(ffmpeg_path, part_path, width, height, fps, self.crf)
        logger.debug("Running %s", " ".join(cmd))

        with tempfile.TemporaryFile() as stderr_file:
            proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=stderr_file)
            written = 0
            try:
                for frame in frames:
                    if frame.size != (width, height):
                        raise RenderError(f"Frame {written} is {frame.size}, expected {(width, height)}")
                    proc.stdin.write(frame.convert("RGB").tobytes())
                    written += 1
                    if on_progress:
                        on_progress(written, total_frames)
                proc.stdin.close()
            except BrokenPipeError:
                # ffmpeg exited early; its return code and stderr explain why
                with contextlib.suppress(BrokenPipeError):
                    proc.stdin.close()
            except BaseException:
                proc.kill()
                proc.wait()
                _remove(part_path)
                raise
            returncode = proc.wait()

            if returncode != 0:
                stderr_file.seek(0)
                stderr = stderr_file.read().decode("utf-8", errors="replace").strip()
                _remove(part_path)
                tail = stderr.splitlines()[-1] if stderr else "no output"
                raise RenderError(f"ffmpeg exited with code {returncode}: {tail}")

        os.replace(part_path, output_path)
        logger.info("Encoded %d frames to %s", written, output_path)
        return output_path


def _remove(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)
