# social_publisher/services/media_probe.py
"""
Metadata extraction for uploaded media.

Images are inspected with Pillow; videos with ffprobe (FFmpeg), which must be on
PATH or pointed to by FFPROBE_BIN.
"""
import asyncio
import io
import json
import os
from fractions import Fraction
from typing import Any, Dict, Optional

from PIL import Image, UnidentifiedImageError

FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")
JPEG_QUALITY = 92


class ProbeError(Exception):
    pass


def _open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        # decode now so truncated files fail here and not on the platform's side
        image.load()
        return image
    except UnidentifiedImageError as exc:
        raise ProbeError("file is not a readable image") from exc
    except Image.DecompressionBombError as exc:
        raise ProbeError(f"image is too large: {exc}") from exc
    except (OSError, SyntaxError) as exc:
        raise ProbeError(f"image could not be decoded: {exc}") from exc


def probe_image(data: bytes) -> Dict[str, Any]:
    with _open_image(data) as image:
        return {"format": image.format, "width": image.width, "height": image.height, "mode": image.mode}


def convert_to_jpeg(data: bytes, quality: int = JPEG_QUALITY) -> bytes:
    """Re-encode any Pillow-readable image (WebP in practice) as JPEG."""
    with _open_image(data) as image:
        # JPEG has no alpha or palette modes
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        out = io.BytesIO()
        try:
            image.save(out, format="JPEG", quality=quality, optimize=True)
        except OSError as exc:
            raise ProbeError(f"image could not be re-encoded as JPEG: {exc}") from exc
        return out.getvalue()


def _parse_rate(value: Optional[str]) -> Optional[float]:
    if not value or value in ("0/0", "0"):
        return None
    try:
        return round(float(Fraction(value)), 3)
    except (ValueError, ZeroDivisionError):
        return None


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_ffprobe_output(report: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce ``ffprobe -show_streams -show_format -of json`` output to what adapters check."""
    streams = report.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise ProbeError("no video stream found")

    fmt = report.get("format") or {}
    width = int(video.get("width") or 0)
    height = int(video.get("height") or 0)
    bitrate = video.get("bit_rate") or fmt.get("bit_rate")
    duration = _to_float(video.get("duration")) or _to_float(fmt.get("duration"))

    return {
        "width": width,
        "height": height,
        "codec": video.get("codec_name"),
        "fps": _parse_rate(video.get("avg_frame_rate")) or _parse_rate(video.get("r_frame_rate")),
        "bitrate": int(bitrate) if bitrate else None,
        "duration": round(duration, 3) if duration is not None else None,
        "aspect_ratio": round(width / height, 4) if width and height else None,
        "has_audio": any(s.get("codec_type") == "audio" for s in streams),
    }


async def probe_video(path: str, ffprobe_bin: str = FFPROBE_BIN) -> Dict[str, Any]:
    try:
        proc = await asyncio.create_subprocess_exec(
            ffprobe_bin,
            "-v", "error",
            "-show_streams",
            "-show_format",
            "-of", "json",
            path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ProbeError(f"ffprobe could not be started: {exc}") from exc
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise ProbeError("ffprobe failed:\n" + stderr.decode(errors="ignore"))
    try:
        report = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise ProbeError("ffprobe returned invalid JSON") from exc
    return parse_ffprobe_output(report)
