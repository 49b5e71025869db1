from uuid import uuid4

import pytest

from skitgen.models.domain import DialogueLine, SubtitlePosition
from skitgen.services.subtitles import (
    ass_color,
    build_srt,
    force_style,
    format_srt_time,
    subtitle_style,
)


def test_format_srt_time():
    assert format_srt_time(0) == "00:00:00,000"
    assert format_srt_time(3723.456) == "01:02:03,456"
    assert format_srt_time(-1) == "00:00:00,000"


def test_build_srt_numbers_cues_and_uses_line_windows():
    lines = [
        DialogueLine(character_id=uuid4(), text="Hello", start_time=0.0, duration=1.5),
        DialogueLine(character_id=uuid4(), text="  World  ", start_time=2.0, duration=2.25),
    ]
    srt = build_srt(lines)
    assert srt == (
        "1\n00:00:00,000 --> 00:00:01,500\nHello\n"
        "\n"
        "2\n00:00:02,000 --> 00:00:04,250\nWorld\n"
    )


def test_build_srt_empty_track():
    assert build_srt([]) == ""


@pytest.mark.parametrize(
    "position, alignment",
    [
        (SubtitlePosition.TOP, 8),
        (SubtitlePosition.CENTER, 5),
        (SubtitlePosition.BOTTOM, 2),
        ("top", 8),
        (None, 2),
    ],
)
def test_subtitle_presets_map_to_libass_alignment(position, alignment):
    style = subtitle_style(position)
    assert style.alignment == alignment
    assert f"Alignment={alignment}" in force_style(style)


def test_force_style_renders_colours_and_margin():
    style = subtitle_style(SubtitlePosition.TOP)
    rendered = force_style(style)
    assert "FontSize=24" in rendered
    assert "PrimaryColour=&H00FFFFFF" in rendered
    assert "Outline=2" in rendered
    assert f"MarginV={style.margin_v}" in rendered


def test_ass_color_swaps_to_bgr():
    assert ass_color("#112233") == "&H00332211"
    assert ass_color("bad") == "&H00FFFFFF"
