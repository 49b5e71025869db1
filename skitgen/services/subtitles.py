from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Protocol

from skitgen.models.domain import SubtitlePosition


class TimedCaption(Protocol):
    text: str
    start_time: float
    duration: float


@dataclass(frozen=True)
class SubtitleStyle:
    name: str
    alignment: int
    margin_v: int
    font_name: str = "Arial"
    font_size: int = 24
    primary_color: str = "#FFFFFF"
    outline_color: str = "#000000"
    outline: int = 2
    bold: bool = False


# libass numpad alignment: 8 top-center, 5 middle-center, 2 bottom-center
SUBTITLE_PRESETS: dict[SubtitlePosition, SubtitleStyle] = {
    SubtitlePosition.TOP: SubtitleStyle(name="top", alignment=8, margin_v=40),
    SubtitlePosition.CENTER: SubtitleStyle(name="center", alignment=5, margin_v=0),
    SubtitlePosition.BOTTOM: SubtitleStyle(name="bottom", alignment=2, margin_v=30),
}


def subtitle_style(position: SubtitlePosition | str | None) -> SubtitleStyle:
    if position is None:
        return SUBTITLE_PRESETS[SubtitlePosition.BOTTOM]
    return SUBTITLE_PRESETS[SubtitlePosition(position)]


def format_srt_time(seconds: float) -> str:
    total_ms = int(round(max(0.0, seconds) * 1000))
    hours = total_ms // 3_600_000
    minutes = (total_ms % 3_600_000) // 60_000
    secs = (total_ms % 60_000) // 1000
    millis = total_ms % 1000
    return f"{hours:02}:{minutes:02}:{secs:02},{millis:03}"


def build_srt(captions: Iterable[TimedCaption]) -> str:
    blocks: List[str] = []
    for index, caption in enumerate(captions):
        start = format_srt_time(caption.start_time)
        end = format_srt_time(caption.start_time + caption.duration)
        blocks.append(f"{index + 1}\n{start} --> {end}\n{caption.text.strip()}\n")
    return "\n".join(blocks)


def ass_color(value: str, alpha: str = "00") -> str:
    hex_value = value.lstrip("#")
    if len(hex_value) != 6:
        return f"&H{alpha}FFFFFF"
    r = hex_value[0:2]
    g = hex_value[2:4]
    b = hex_value[4:6]
    return f"&H{alpha}{b}{g}{r}".upper()


def force_style(style: SubtitleStyle) -> str:
    parts = [
        f"Fontname={style.font_name}",
        f"FontSize={style.font_size}",
        f"PrimaryColour={ass_color(style.primary_color)}",
        f"OutlineColour={ass_color(style.outline_color)}",
        f"Outline={style.outline}",
        f"Bold={'-1' if style.bold else '0'}",
        f"Alignment={style.alignment}",
        f"MarginV={style.margin_v}",
    ]
    return ",".join(parts)
