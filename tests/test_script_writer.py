import json

import pytest

from conftest import FakeLLM
from skitgen.errors import ProviderError
from skitgen.models.domain import Character
from skitgen.services.script_writer import (
    FALLBACK_TITLE,
    ScriptGenerator,
    extract_json_object,
    resolve_character_name,
    strip_code_fence,
)


@pytest.fixture
def roster():
    return [
        Character(name="alice", display_name="Alice Wonder", voice_id="voice-a", image_url="a.png"),
        Character(name="bob", display_name="Bob Builder", voice_id="voice-b", image_url="b.png"),
    ]


def test_generate_script_returns_canonical_names_and_delays(roster):
    llm = FakeLLM(
        lines=[
            {"characterName": "Alice", "text": "Pizza tonight?", "delay": 0},
            {"characterName": "Builder", "text": "Always.", "delay": "0.6"},
            {"characterName": "bob", "text": "Extra cheese.", "delay": -2},
        ]
    )
    script = ScriptGenerator(llm).generate_script("Two friends order pizza", roster, 30)
    assert script.title == "Pizza Night"
    assert [d.character_name for d in script.dialogues] == ["alice", "bob", "bob"]
    assert [d.delay for d in script.dialogues] == [0.0, 0.6, 0.0]
    assert "approximately 30 seconds" in llm.prompts[0]
    assert "Alice Wonder (alice)" in llm.prompts[0]


def test_unknown_character_fails_generation(roster):
    llm = FakeLLM(lines=[{"characterName": "mallory", "text": "Hi", "delay": 0}])
    with pytest.raises(ProviderError, match="^Failed to generate script: Unknown character in script: mallory$"):
        ScriptGenerator(llm).generate_script("plot", roster)


def test_provider_failure_is_prefixed(roster):
    llm = FakeLLM(fail_with=RuntimeError("rate limited"))
    with pytest.raises(ProviderError, match="^Failed to generate script: rate limited$"):
        ScriptGenerator(llm).generate_script("plot", roster)


def test_response_without_dialogue_fails(roster):
    llm = FakeLLM(lines=[])
    with pytest.raises(ProviderError, match="no dialogue"):
        ScriptGenerator(llm).generate_script("plot", roster)


def test_script_is_extracted_from_chatty_response(roster):
    class Chatty(FakeLLM):
        def complete(self, prompt):
            payload = json.dumps({"title": "T {braces}", "dialogues": [{"characterName": "alice", "text": "a } b"}]})
            return f"Sure! Here you go:\n```json\n{payload}\n```\nEnjoy {{not json}}"

    script = ScriptGenerator(Chatty()).generate_script("plot", roster)
    assert script.title == "T {braces}"
    assert script.dialogues[0].text == "a } b"


def test_extract_json_object_respects_strings():
    text = 'noise {"a": "}", "b": {"c": 1}} trailing }'
    assert json.loads(extract_json_object(text)) == {"a": "}", "b": {"c": 1}}
    assert extract_json_object("no json here") is None


def test_strip_code_fence():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('{"a": 1}') == '{"a": 1}'


def test_resolve_character_name(roster):
    assert resolve_character_name("ALICE", roster).name == "alice"
    assert resolve_character_name("wonder", roster).name == "alice"
    assert resolve_character_name("bob the builder", roster).name == "bob"
    assert resolve_character_name("", roster) is None
    assert resolve_character_name("zed", roster) is None


def test_generate_title_falls_back():
    assert ScriptGenerator(FakeLLM(fail_with=RuntimeError("down"))).generate_title("plot") == FALLBACK_TITLE
    assert ScriptGenerator(FakeLLM(title='  "Quoted"  ')).generate_title("plot") == "Quoted"
    assert ScriptGenerator(FakeLLM(title="")).generate_title("plot") == FALLBACK_TITLE
