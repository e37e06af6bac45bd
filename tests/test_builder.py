import json

import pytest

from builder import (
    AppBuilder, BuildState, MalformedResponse, StreamAccumulator,
    build_prompt, extract_app_schema, fixed_backoff, linear_backoff,
)
from system_prompt import FAILURE_MESSAGE

from conftest import RED_APPLE_URI, TODO_APP, FakeGemini, split_fragments


def test_accumulator_concatenates_in_arrival_order():
    acc = StreamAccumulator()
    seen = list(acc.consume(["{\"app", "", "Name\":", None, " 1}"]))
    assert acc.buffer == '{"appName": 1}'
    assert [buf for _, buf in seen] == ['{"app', '{"appName":', '{"appName": 1}']


@pytest.mark.parametrize("wrapper", [
    "{}",
    "Here is your app:\n```json\n{}\n```\nEnjoy!",
    "Sure! {} Let me know if you want changes.",
])
def test_extract_recovers_object_from_wrapped_fragments(wrapper):
    payload = json.dumps(TODO_APP)
    text = wrapper.replace("{}", payload)
    acc = StreamAccumulator()
    for _ in acc.consume(split_fragments(text, 5)):
        pass
    app = extract_app_schema(acc.buffer)
    assert app.to_doc() == TODO_APP


def test_extract_is_idempotent():
    first = extract_app_schema("prose " + json.dumps(TODO_APP) + " more prose")
    second = extract_app_schema(json.dumps(first.to_doc()))
    assert second == first


def test_extract_escapes_raw_newlines_and_tabs():
    raw = '{"appName": "Notes", "description": "d", "code": "<html>\n\t<body></body>\r\n</html>"}'
    app = extract_app_schema(raw)
    assert app.code == "<html>\n\t<body></body>\r\n</html>"


def test_extract_reads_pretty_printed_reply_with_raw_newlines_in_code():
    raw = '{\n  "appName": "Notes",\n  "description": "d",\n  "code": "<html>\n<body></body>\n</html>"\n}'
    app = extract_app_schema("```json\n" + raw + "\n```")
    assert app.app_name == "Notes"
    assert app.code == "<html>\n<body></body>\n</html>"


def test_extract_without_braces_fails():
    with pytest.raises(MalformedResponse):
        extract_app_schema("I could not build that, sorry.")


def test_extract_unparseable_fails():
    with pytest.raises(MalformedResponse):
        extract_app_schema('{"appName": "x", "code": <html>}')


def test_extract_requires_code_string():
    with pytest.raises(MalformedResponse):
        extract_app_schema('{"appName": "x", "code": 42}')


def test_extract_tolerates_missing_name_and_description():
    app = extract_app_schema('{"code": "<html></html>", "appName": 7}')
    assert app.app_name == "Untitled App"
    assert app.description == ""


def test_build_prompt_includes_current_code_when_editing():
    assert build_prompt("make it blue") == "make it blue"
    prompt = build_prompt("make it blue", "<html>old</html>")
    assert "<html>old</html>" in prompt
    assert "make it blue" in prompt


def test_backoff_policies():
    assert fixed_backoff(1.0)(3) == 1.0
    assert linear_backoff(0.5)(3) == 1.5


def _builder(gemini, sleeps, **kwargs):
    return AppBuilder(gemini.stream_generation, gemini.generate_image, sleep=sleeps.append, **kwargs)


def test_successful_build_emits_states_chunks_and_done():
    gemini = FakeGemini(replies=[split_fragments(json.dumps(TODO_APP))])
    sleeps = []
    events = list(_builder(gemini, sleeps).build("todo list app"))

    states = [e["state"] for e in events if e["type"] == "state"]
    assert states == [BuildState.CODING.value, BuildState.ASSETS.value, BuildState.IDLE.value]

    chunks = [e for e in events if e["type"] == "chunk"]
    assert "".join(c["text"] for c in chunks) == json.dumps(TODO_APP)
    assert chunks[-1]["message"]["streamContent"] == json.dumps(TODO_APP)
    assert chunks[-1]["message"]["isStreaming"] is True

    done = events[-1]
    assert done["type"] == "done"
    assert done["message"]["content"] == 'Built "ToDo".'
    assert "isStreaming" not in done["message"]
    assert "streamContent" not in done["message"]
    assert done["app"]["code"] == TODO_APP["code"]
    assert done["images"] == []
    assert sleeps == []


def test_repair_loop_retries_then_succeeds():
    gemini = FakeGemini(replies=[["not json"], [json.dumps(TODO_APP)]])
    sleeps = []
    events = list(_builder(gemini, sleeps).build("todo"))

    assert len(gemini.stream_calls) == 2
    assert sleeps == [1.0]
    states = [e["state"] for e in events if e["type"] == "state"]
    assert states[:3] == ["coding", "repairing", "coding"]
    assert events[-1]["type"] == "done"


def test_repair_loop_gives_up_after_three_attempts():
    gemini = FakeGemini(replies=[["Sorry, I can only talk about cooking."]])
    sleeps = []
    events = list(_builder(gemini, sleeps).build("todo"))

    assert len(gemini.stream_calls) == 3
    assert len(sleeps) == 2
    assert events[-1]["type"] == "error"
    assert events[-1]["message"]["content"] == FAILURE_MESSAGE
    assert "isStreaming" not in events[-1]["message"]


def test_transport_errors_are_retried():
    gemini = FakeGemini(replies=[[ConnectionError("reset")], [json.dumps(TODO_APP)]])
    events = list(_builder(gemini, []).build("todo"))
    assert len(gemini.stream_calls) == 2
    assert events[-1]["type"] == "done"


def test_custom_backoff_and_retry_count():
    gemini = FakeGemini(replies=[["nope"]])
    sleeps = []
    list(_builder(gemini, sleeps, max_retries=3, backoff=linear_backoff(0.5)).build("x"))
    assert len(gemini.stream_calls) == 4
    assert sleeps == [0.5, 1.0, 1.5]


def test_build_resolves_images():
    app = dict(TODO_APP, code='<html><body><img src="p.png" data-image-prompt="a red apple"></body></html>')
    gemini = FakeGemini(replies=[[json.dumps(app)]], image_results={"a red apple": RED_APPLE_URI})
    events = list(_builder(gemini, []).build("fruit shop"))

    done = events[-1]
    assert RED_APPLE_URI in done["app"]["code"]
    assert "data-image-prompt" not in done["app"]["code"]
    assert done["images"][0]["prompt"] == "a red apple"
    assert done["images"][0]["url"] == RED_APPLE_URI
