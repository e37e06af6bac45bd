"""Prompt -> streamed JSON -> HTML app, with a bounded repair loop.

``AppBuilder.build`` is a generator of plain event dicts so that the HTTP
layer (or a test) decides what to do with them:

    {"type": "state", "state": "coding", "attempt": 1}
    {"type": "chunk", "text": "...", "message": {...}}
    {"type": "done", "message": {...}, "app": {...}, "images": [...]}
    {"type": "error", "message": {...}}
"""
import json
import logging
import time
from enum import Enum

from pydantic import ValidationError

from assets import resolve_assets
from models import AppSchema, ChatMessage
from system_prompt import EDIT_PROMPT, FAILURE_MESSAGE

logger = logging.getLogger(__name__)


class MalformedResponse(Exception):
    pass


class BuildState(str, Enum):
    CODING = "coding"
    ASSETS = "assets"
    REPAIRING = "repairing"
    IDLE = "idle"


def fixed_backoff(seconds):
    return lambda attempt: seconds


def linear_backoff(step):
    return lambda attempt: step * attempt


class StreamAccumulator:
    """Concatenates streamed text fragments in arrival order."""

    def __init__(self):
        self.buffer = ""

    def feed(self, fragment):
        self.buffer += fragment or ""
        return self.buffer

    def consume(self, fragments):
        """Yield (fragment, buffer so far) for every non-empty fragment."""
        for fragment in fragments:
            if fragment:
                yield fragment, self.feed(fragment)


def _escape_control_chars(text):
    return text.replace("\r", "\\r").replace("\n", "\\n").replace("\t", "\\t")


def extract_app_schema(buffer):
    """Pull the app JSON object out of a model reply.

    The reply may wrap the object in prose or code fences, so everything from
    the first ``{`` to the last ``}`` is parsed. Control characters inside
    strings are then allowed, and as a last resort every raw newline and tab
    is escaped.
    """
    start = buffer.find("{")
    end = buffer.rfind("}")
    if start == -1 or end < start:
        raise MalformedResponse("No JSON object found in response")
    candidate = buffer[start:end + 1]

    error = None
    for text, strict in ((candidate, True), (candidate, False),
                         (_escape_control_chars(candidate), True)):
        try:
            data = json.loads(text, strict=strict)
            break
        except json.JSONDecodeError as e:
            error = e
    else:
        raise MalformedResponse(f"Could not parse JSON: {error}") from error

    if not isinstance(data, dict) or not isinstance(data.get("code"), str):
        raise MalformedResponse("Response JSON has no code string")

    app_name = data.get("appName")
    description = data.get("description")
    try:
        return AppSchema(
            app_name=app_name if isinstance(app_name, str) and app_name.strip() else "Untitled App",
            description=description if isinstance(description, str) else "",
            code=data["code"],
        )
    except ValidationError as e:
        raise MalformedResponse(str(e)) from e


def build_prompt(request, current_code=None):
    if not current_code:
        return request
    return EDIT_PROMPT.format(code=current_code, request=request)


class AppBuilder:
    """Runs one user action through stream, parse and asset resolution.

    ``stream_fn(prompt, history)`` yields text fragments and
    ``image_fn(description)`` returns a data URI or None. A failed attempt is
    retried up to ``max_retries`` times, waiting ``backoff(retry)`` seconds.
    """

    def __init__(self, stream_fn, image_fn, max_retries=2,
                 backoff=fixed_backoff(1.0), sleep=time.sleep):
        self.stream_fn = stream_fn
        self.image_fn = image_fn
        self.max_retries = max_retries
        self.backoff = backoff
        self.sleep = sleep

    def _attempt(self, prompt, history, message, outcome):
        stream = StreamAccumulator()
        for fragment, buffer in stream.consume(self.stream_fn(prompt, history)):
            message = message.streaming(buffer)
            yield {"type": "chunk", "text": fragment, "message": message.to_doc()}

        app = extract_app_schema(stream.buffer)

        yield {"type": "state", "state": BuildState.ASSETS.value}
        code, images = resolve_assets(app.code, self.image_fn)
        outcome["app"] = app.model_copy(update={"code": code})
        outcome["images"] = images

    def build(self, prompt, history=()):
        history = tuple(history)
        retries = 0
        while True:
            attempt = retries + 1
            logger.info("Generation attempt %d", attempt)
            yield {"type": "state", "state": BuildState.CODING.value, "attempt": attempt}
            message = ChatMessage.placeholder()
            outcome = {}
            try:
                yield from self._attempt(prompt, history, message, outcome)
                break
            except Exception as e:
                logger.warning("Attempt %d failed: %s", attempt, e)
                if retries >= self.max_retries:
                    logger.error("Giving up after %d attempts", attempt)
                    final = message.finalized(FAILURE_MESSAGE)
                    yield {"type": "state", "state": BuildState.IDLE.value}
                    yield {"type": "error", "message": final.to_doc()}
                    return
                retries += 1
                yield {"type": "state", "state": BuildState.REPAIRING.value, "attempt": attempt}
                self.sleep(self.backoff(retries))

        app = outcome["app"]
        final = message.finalized(f'Built "{app.app_name}".')
        yield {"type": "state", "state": BuildState.IDLE.value}
        yield {
            "type": "done",
            "message": final.to_doc(),
            "app": app.to_doc(),
            "images": [img.to_doc() for img in outcome["images"]],
        }
