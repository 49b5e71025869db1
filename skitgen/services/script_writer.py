from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence

from skitgen.errors import wrap_provider_error
from skitgen.models.domain import Character

FALLBACK_TITLE = "Untitled Video"


class ScriptProvider(Protocol):
    def complete(self, prompt: str) -> str: ...


@dataclass
class GeneratedDialogue:
    character_name: str
    text: str
    delay: float = 0.0


@dataclass
class GeneratedScript:
    title: str
    dialogues: List[GeneratedDialogue] = field(default_factory=list)


def strip_code_fence(payload: str) -> str:
    text = payload.strip()
    if text.startswith("```"):
        text = text[3:]
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.lstrip("\n\r")
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` block, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def resolve_character_name(name: str, characters: Sequence[Character]) -> Character | None:
    wanted = name.strip().lower()
    if not wanted:
        return None
    for character in characters:
        if character.name.lower() == wanted:
            return character
    for character in characters:
        if wanted in character.display_name.lower() or character.name.lower() in wanted:
            return character
    return None


class ScriptGenerator:
    def __init__(self, provider: ScriptProvider, logger: Optional[logging.Logger] = None) -> None:
        self.provider = provider
        self.log = logger or logging.getLogger(__name__)

    def generate_script(
        self,
        plot: str,
        characters: Sequence[Character],
        target_duration: float | None = 60,
    ) -> GeneratedScript:
        prompt = self.build_prompt(plot, characters, target_duration or 60)
        try:
            text = self.provider.complete(prompt)
            script = self._parse_script(text)
            for dialogue in script.dialogues:
                match = resolve_character_name(dialogue.character_name, characters)
                if match is None:
                    raise ValueError(f"Unknown character in script: {dialogue.character_name}")
                dialogue.character_name = match.name
        except Exception as exc:
            self.log.error("script generation failed", extra={"plot_excerpt": plot[:200]}, exc_info=True)
            raise wrap_provider_error("Failed to generate script", exc, provider="openrouter") from exc
        self.log.info("generated script", extra={"lines": len(script.dialogues), "title": script.title})
        return script

    def generate_title(self, plot: str) -> str:
        prompt = (
            f'Generate a short, catchy video title (max 10 words) for this content: "{plot}". '
            "Return only the title, no quotes or explanation."
        )
        try:
            title = self.provider.complete(prompt).strip().strip("\"'").strip()
        except Exception:
            self.log.warning("title generation failed, using fallback", exc_info=True)
            return FALLBACK_TITLE
        return title or FALLBACK_TITLE

    def build_prompt(self, plot: str, characters: Sequence[Character], target_duration: float) -> str:
        roster = "\n".join(
            f"- {c.display_name} ({c.name}): A character who will speak in the video" for c in characters
        )
        return (
            "You are a script writer for short-form video content. Generate a dialogue script based on the following:\n\n"
            f"PLOT: {plot}\n\n"
            f"CHARACTERS:\n{roster}\n\n"
            "REQUIREMENTS:\n"
            f"- The video should be approximately {int(target_duration)} seconds long\n"
            "- Each character should have natural, conversational dialogue\n"
            "- Keep each line SHORT (under 15 words) for easy listening\n"
            "- Create 6-10 dialogue lines total\n"
            "- Make it entertaining and engaging\n"
            "- Characters should interact naturally with each other\n"
            "- Use the character name in parentheses as characterName\n"
            "- Add natural conversation delays before each line (in seconds):\n"
            "  * 0.1-0.3s for quick responses/interruptions\n"
            "  * 0.3-0.6s for normal conversational flow\n"
            "  * 0.6-1.0s for thoughtful pauses, topic changes, or dramatic effect\n"
            "  * 1.0-1.5s for long pauses after important statements or jokes\n"
            "  * First line should have 0 delay\n\n"
            "OUTPUT FORMAT (JSON only, no markdown):\n"
            "{\n"
            '  "title": "A catchy title for this video",\n'
            '  "dialogues": [\n'
            '    { "characterName": "character_name_here", "text": "What they say", "delay": 0 },\n'
            '    { "characterName": "other_character", "text": "Their response", "delay": 0.4 }\n'
            "  ]\n"
            "}\n\n"
            "Generate the script now:"
        )

    def _parse_script(self, raw: str) -> GeneratedScript:
        block = extract_json_object(strip_code_fence(raw))
        if block is None:
            raise ValueError("Failed to parse script from AI response")
        data: dict[str, Any] = json.loads(block)
        dialogues: List[GeneratedDialogue] = []
        for entry in data.get("dialogues") or []:
            if not isinstance(entry, dict):
                continue
            text = str(entry.get("text") or "").strip()
            if not text:
                continue
            dialogues.append(
                GeneratedDialogue(
                    character_name=str(entry.get("characterName") or entry.get("character") or ""),
                    text=text,
                    delay=self._parse_delay(entry.get("delay")),
                )
            )
        if not dialogues:
            raise ValueError("AI response contained no dialogue lines")
        return GeneratedScript(title=str(data.get("title") or "").strip(), dialogues=dialogues)

    def _parse_delay(self, value: Any) -> float:
        try:
            return max(0.0, float(value))
        except (TypeError, ValueError):
            return 0.0
