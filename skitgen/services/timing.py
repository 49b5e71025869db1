"""Dialogue timing.

Two layouts are used: an estimate computed from word counts before any audio
exists, and the authoritative layout computed from synthesized durations and
authored delays.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from skitgen.models.domain import AudioSegment, DialogueLine

log = logging.getLogger(__name__)

MIN_ESTIMATED_DURATION = 1.5


@dataclass
class TimedText:
    text: str
    start_time: float
    duration: float


def estimate_duration(text: str, words_per_second: float = 2.5) -> float:
    words = len(text.split())
    return max(MIN_ESTIMATED_DURATION, words / max(words_per_second, 0.1))


def estimate_timings(
    texts: Iterable[str],
    start_time: float = 0.0,
    words_per_second: float = 2.5,
    pause_between_lines: float = 0.5,
) -> List[TimedText]:
    current = start_time
    timed: List[TimedText] = []
    for text in texts:
        duration = estimate_duration(text, words_per_second)
        timed.append(TimedText(text=text, start_time=current, duration=duration))
        current += duration + pause_between_lines
    return timed


def recalculate_timings(
    lines: Sequence[DialogueLine],
    audio_segments: Optional[Sequence[AudioSegment]] = None,
) -> None:
    """Lay lines out back to back: each starts after the previous line ends plus its own delay."""
    current = 0.0
    for index, line in enumerate(lines):
        current += line.delay
        line.start_time = current
        if audio_segments is not None and index < len(audio_segments):
            audio_segments[index].start_time = current
        current += line.duration


def apply_delays(lines: Sequence[DialogueLine], delays: Optional[Sequence[float]]) -> int:
    """Overwrite delays for the indices provided; returns how many lines changed."""
    if not delays:
        return 0
    changed = 0
    for index, delay in enumerate(delays[: len(lines)]):
        if delay is None:
            continue
        lines[index].delay = max(0.0, float(delay))
        changed += 1
    if len(delays) > len(lines):
        log.warning(
            "ignoring extra delay values",
            extra={"provided": len(delays), "lines": len(lines)},
        )
    return changed


def total_duration(lines: Iterable[DialogueLine]) -> float:
    end = 0.0
    for line in lines:
        end = max(end, line.start_time + line.duration)
    return end
