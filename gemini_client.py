import logging
import time

from google import genai
from google.genai import types
from google.genai.types import Modality

from assets import encode_image_data_uri
from config import THINKING_MODELS
from system_prompt import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

IMAGE_ATTEMPTS = 3
IMAGE_BACKOFF_SECONDS = 0.5


def to_contents(history, prompt):
    """Turn finalized chat messages plus the new prompt into Gemini contents."""
    contents = []
    for msg in history:
        if msg.is_streaming or not msg.content:
            continue
        role = "user" if msg.role == "user" else "model"
        contents.append(types.Content(role=role, parts=[types.Part.from_text(text=msg.content)]))
    contents.append(types.Content(role="user", parts=[types.Part.from_text(text=prompt)]))
    return contents


class GeminiClient:
    def __init__(self, api_key, text_model, image_model, timeout_ms=300_000,
                 max_image_side=1024, client=None, sleep=time.sleep):
        self.api_key = api_key
        self.text_model = text_model
        self.image_model = image_model
        self.timeout_ms = timeout_ms
        self.max_image_side = max_image_side
        self.sleep = sleep
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("GEMINI_API_KEY is not set")
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=self.timeout_ms),
            )
        return self._client

    def build_config(self, model):
        kwargs = {
            "system_instruction": SYSTEM_PROMPT,
            "response_mime_type": "application/json",
        }
        if model in THINKING_MODELS:
            kwargs["thinking_config"] = types.ThinkingConfig(thinking_level="low")
        return types.GenerateContentConfig(**kwargs)

    def stream_generation(self, prompt, history=(), model=None):
        """Yield text fragments of the model reply in arrival order."""
        model = model or self.text_model
        stream = self.client.models.generate_content_stream(
            model=model,
            contents=to_contents(history, prompt),
            config=self.build_config(model),
        )
        for chunk in stream:
            if chunk.text:
                yield chunk.text

    def _request_image(self, description):
        config = types.GenerateContentConfig(
            response_modalities=[Modality.TEXT, Modality.IMAGE],
            temperature=0,
        )
        response = self.client.models.generate_content(
            model=self.image_model, contents=description, config=config,
        )
        for part in response.candidates[0].content.parts:
            if part.inline_data:
                mime = part.inline_data.mime_type or "image/png"
                return encode_image_data_uri(part.inline_data.data, mime, self.max_image_side)
        return None

    def generate_image(self, description):
        """Return a data URI for ``description`` or None once all attempts fail."""
        for attempt in range(1, IMAGE_ATTEMPTS + 1):
            try:
                url = self._request_image(description)
                if url:
                    return url
                logger.warning("Image attempt %d returned no image", attempt)
            except Exception as e:
                logger.warning("Image attempt %d failed: %s", attempt, e)
            if attempt < IMAGE_ATTEMPTS:
                self.sleep(IMAGE_BACKOFF_SECONDS * attempt)
        return None
