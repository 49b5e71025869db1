from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Optional, Protocol, Sequence, Tuple

from PIL import Image

from skitgen.errors import ProviderError
from skitgen.models.domain import Anchor, AudioSegment, MediaInfo, Position, SubtitlePosition, VideoSegment
from skitgen.services.filtergraph import FilterGraph, escape_value
from skitgen.services.subtitles import force_style, subtitle_style

QUALITY_CRF = {"low": 28, "medium": 23, "high": 18}
SOURCE_AUDIO_VOLUME = 0.3


class MediaEngine(Protocol):
    def run(self, args: Sequence[str], description: str = "ffmpeg") -> None: ...

    def probe(self, path: str) -> dict[str, Any]: ...


def overlay_position(
    position: Position,
    video_width: int,
    video_height: int,
    image_width: int,
    image_height: int,
) -> Tuple[int, int]:
    scaled_width = image_width * position.scale
    scaled_height = image_height * position.scale
    x = (position.x / 100) * video_width
    y = (position.y / 100) * video_height
    anchor = Anchor(position.anchor)
    if anchor == Anchor.CENTER:
        x -= scaled_width / 2
        y -= scaled_height / 2
    elif anchor == Anchor.TOP_RIGHT:
        x -= scaled_width
    elif anchor == Anchor.BOTTOM_LEFT:
        y -= scaled_height
    elif anchor == Anchor.BOTTOM_RIGHT:
        x -= scaled_width
        y -= scaled_height
    return round(x), round(y)


def parse_frame_rate(value: str | None, default: float = 30.0) -> float:
    if not value:
        return default
    num, _, den = value.partition("/")
    try:
        numerator = float(num)
        denominator = float(den) if den else 1.0
    except ValueError:
        return default
    if not denominator:
        return default
    return numerator / denominator


class MediaCompositor:
    def __init__(
        self,
        engine: MediaEngine,
        processing_path: str = "./storage/processing",
        default_image_size: int = 400,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.engine = engine
        self.processing_path = processing_path
        self.default_image_size = default_image_size
        self.log = logger or logging.getLogger(__name__)

    def probe(self, path: str) -> MediaInfo:
        payload = self.engine.probe(path)
        streams = payload.get("streams") or []
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        if video is None:
            raise ProviderError(f"Failed to probe media: no video stream in {path}", provider="ffmpeg")
        fmt = payload.get("format") or {}
        return MediaInfo(
            duration=float(fmt.get("duration") or 0.0),
            width=int(video.get("width") or 1920),
            height=int(video.get("height") or 1080),
            frame_rate=parse_frame_rate(video.get("r_frame_rate")),
            codec=video.get("codec_name") or "unknown",
            bitrate=int(fmt.get("bit_rate") or 0),
            has_audio=any(s.get("codec_type") == "audio" for s in streams),
        )

    def image_size(self, path: str) -> Tuple[int, int]:
        try:
            with Image.open(path) as image:
                return image.size
        except OSError:
            self.log.warning(
                "overlay image size unreadable, using default",
                extra={"path": path, "size": self.default_image_size},
            )
            return self.default_image_size, self.default_image_size

    def apply_overlays(self, video_path: str, segments: Sequence[VideoSegment], output_path: str | None = None) -> str:
        if not segments:
            return video_path
        output = output_path or self._scratch_path("characters")
        info = self.probe(video_path)

        args = ["-i", video_path]
        graph = FilterGraph()
        current = "0:v"
        for index, segment in enumerate(segments):
            args += ["-i", segment.image_path]
            image_width, image_height = self.image_size(segment.image_path)
            scaled_width = max(1, round(image_width * segment.position.scale))
            scaled_height = max(1, round(image_height * segment.position.scale))
            x, y = overlay_position(segment.position, info.width, info.height, image_width, image_height)
            scaled_label = f"scaled{index}"
            output_label = "vout" if index == len(segments) - 1 else f"v{index}"
            graph.add([f"{index + 1}:v"], f"scale={scaled_width}:{scaled_height}", [scaled_label])
            graph.add(
                [current, scaled_label],
                f"overlay={x}:{y}:enable='between(t,{segment.start_time:.3f},{segment.end_time:.3f})'",
                [output_label],
            )
            current = output_label

        args += [
            "-filter_complex",
            graph.render(),
            "-map",
            f"[{current}]",
            "-map",
            "0:a?",
            "-c:a",
            "copy",
            output,
        ]
        self.engine.run(args, description="Character overlay")
        self.log.info("applied character overlays", extra={"segments": len(segments), "output": output})
        return output

    def mix_audio(self, video_path: str, segments: Sequence[AudioSegment], output_path: str | None = None) -> str:
        if not segments:
            return video_path
        output = output_path or self._scratch_path("merged")
        info = self.probe(video_path)

        args = ["-i", video_path]
        graph = FilterGraph()
        mix_inputs: list[str] = []
        if info.has_audio:
            graph.add(["0:a"], f"volume={SOURCE_AUDIO_VOLUME}", ["orig"])
            mix_inputs.append("orig")
        for index, segment in enumerate(segments):
            args += ["-i", segment.audio_path]
            delay_ms = max(0, round(segment.start_time * 1000))
            label = f"a{index}"
            graph.add([f"{index + 1}:a"], f"adelay={delay_ms}|{delay_ms}", [label])
            mix_inputs.append(label)
        graph.add(mix_inputs, f"amix=inputs={len(mix_inputs)}:duration=longest", ["aout"])

        args += [
            "-filter_complex",
            graph.render(),
            "-map",
            "0:v",
            "-map",
            "[aout]",
            "-c:v",
            "copy",
            "-c:a",
            "aac",
            output,
        ]
        self.engine.run(args, description="Audio merge")
        self.log.info(
            "merged audio tracks",
            extra={"segments": len(segments), "source_audio": info.has_audio, "output": output},
        )
        return output

    def burn_subtitles(
        self,
        video_path: str,
        srt_content: str,
        position: SubtitlePosition | str | None = None,
        output_path: str | None = None,
    ) -> str:
        output = output_path or self._scratch_path("subtitled")
        srt_path = os.path.splitext(output)[0] + ".srt"
        with open(srt_path, "w", encoding="utf-8") as f:
            f.write(srt_content)

        style = subtitle_style(position)
        self.log.info(
            "burning subtitles",
            extra={"preset": style.name, "alignment": style.alignment, "margin_v": style.margin_v},
        )
        vf = f"subtitles='{escape_value(os.path.abspath(srt_path))}':force_style='{force_style(style)}'"
        self.engine.run(
            [
                "-i",
                video_path,
                "-vf",
                vf,
                "-c:v",
                "libx264",
                "-pix_fmt",
                "yuv420p",
                "-c:a",
                "copy",
                output,
            ],
            description="Subtitle burn",
        )
        return output

    def finalize(self, video_path: str, output_path: str, quality: str = "medium") -> str:
        crf = QUALITY_CRF.get(quality, QUALITY_CRF["medium"])
        self.engine.run(
            [
                "-i",
                video_path,
                "-c:v",
                "libx264",
                "-crf",
                str(crf),
                "-preset",
                "medium",
                "-pix_fmt",
                "yuv420p",
                "-c:a",
                "aac",
                "-b:a",
                "192k",
                "-movflags",
                "+faststart",
                output_path,
            ],
            description="Finalization",
        )
        self.log.info("video finalized", extra={"output": output_path, "quality": quality, "crf": crf})
        return output_path

    def extract_thumbnail(self, video_path: str, output_path: str, timestamp: float = 1.0, size: str = "320x180") -> str:
        width, _, height = size.partition("x")
        self.engine.run(
            [
                "-ss",
                f"{max(0.0, timestamp):.3f}",
                "-i",
                video_path,
                "-frames:v",
                "1",
                "-vf",
                f"scale={width}:{height}",
                "-q:v",
                "2",
                output_path,
            ],
            description="Thumbnail extraction",
        )
        return output_path

    def _scratch_path(self, label: str) -> str:
        os.makedirs(self.processing_path, exist_ok=True)
        return os.path.join(self.processing_path, f"{label}_{uuid.uuid4().hex[:12]}.mp4")
