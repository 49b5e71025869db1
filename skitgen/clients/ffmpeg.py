from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, Optional, Sequence

from skitgen.errors import ProviderError


class FFmpegRunner:
    """Thin subprocess wrapper around the ffmpeg and ffprobe binaries."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.log = logger or logging.getLogger(__name__)

    def run(self, args: Sequence[str], description: str = "ffmpeg") -> None:
        cmd = [self.ffmpeg_path, "-y", "-hide_banner", "-loglevel", "error", *args]
        self.log.debug("running ffmpeg", extra={"args": cmd})
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise ProviderError(f"{description} failed: ffmpeg binary not found", provider="ffmpeg") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            self.log.warning(
                "ffmpeg command failed",
                extra={"args": cmd, "returncode": exc.returncode, "stderr": stderr[-2000:]},
            )
            raise ProviderError(f"{description} failed: {stderr[-500:] or exc}", provider="ffmpeg") from exc

    def probe(self, path: str) -> dict[str, Any]:
        cmd = [
            self.ffprobe_path,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            path,
        ]
        try:
            result = subprocess.run(cmd, check=True, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise ProviderError("Failed to probe media: ffprobe binary not found", provider="ffmpeg") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise ProviderError(f"Failed to probe media: {stderr[-500:] or exc}", provider="ffmpeg") from exc
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Failed to probe media: invalid ffprobe output ({exc})", provider="ffmpeg") from exc
