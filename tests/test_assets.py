import base64
import io

import pytest
from bs4 import BeautifulSoup
from PIL import Image

from assets import decode_data_uri, encode_image_data_uri, resolve_assets
from system_prompt import IMAGE_PROMPT_SUFFIX

from conftest import RED_APPLE_URI


def _png_bytes(size=(64, 32), mode="RGB"):
    buf = io.BytesIO()
    color = (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30)
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


class Recorder:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    def __call__(self, description):
        self.calls.append(description)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_single_placeholder_is_replaced():
    html = '<html><body><img src="https://placehold.co/600x400" data-image-prompt="a red apple"></body></html>'
    gen = Recorder([RED_APPLE_URI])
    code, images = resolve_assets(html, gen)

    assert gen.calls == ["a red apple" + IMAGE_PROMPT_SUFFIX]
    assert RED_APPLE_URI in code
    assert "placehold.co" not in code
    assert BeautifulSoup(code, "html.parser").find_all(attrs={"data-image-prompt": True}) == []
    assert len(images) == 1
    assert images[0].prompt == "a red apple"
    assert images[0].url == RED_APPLE_URI


def test_each_described_image_is_requested_once_in_document_order():
    html = (
        "<div>"
        '<img src="a.png" data-image-prompt="first">'
        '<img src="plain.png">'
        '<img src="b.png" data-image-prompt="second">'
        '<img src="c.png" data-image-prompt="third">'
        "</div>"
    )
    gen = Recorder(["data:image/png;base64,AAA", None, RuntimeError("quota")])
    code, images = resolve_assets(html, gen)

    assert [c[:-len(IMAGE_PROMPT_SUFFIX)] for c in gen.calls] == ["first", "second", "third"]
    assert [img.prompt for img in images] == ["first"]

    soup = BeautifulSoup(code, "html.parser")
    srcs = [img["src"] for img in soup.find_all("img")]
    assert srcs == ["data:image/png;base64,AAA", "plain.png", "b.png", "c.png"]
    left = [img["data-image-prompt"] for img in soup.find_all(attrs={"data-image-prompt": True})]
    assert left == ["second", "third"]


def test_html_without_placeholders_is_returned_unchanged():
    html = "<!DOCTYPE html><html><body><img src='x.png'></body></html>"
    gen = Recorder([])
    code, images = resolve_assets(html, gen)
    assert code == html
    assert images == []
    assert gen.calls == []


def test_encode_opaque_image_as_jpeg_within_max_side():
    uri = encode_image_data_uri(_png_bytes((2048, 1024)), "image/png", max_side=512)
    mime, raw = decode_data_uri(uri)
    assert mime == "image/jpeg"
    img = Image.open(io.BytesIO(raw))
    assert max(img.size) == 512


def test_encode_keeps_transparency_as_png():
    uri = encode_image_data_uri(_png_bytes(mode="RGBA"), "image/png")
    assert uri.startswith("data:image/png;base64,")
    _, raw = decode_data_uri(uri)
    assert Image.open(io.BytesIO(raw)).mode == "RGBA"


def test_decode_data_uri():
    mime, raw = decode_data_uri("data:image/gif;base64," + base64.b64encode(b"gif").decode())
    assert mime == "image/gif"
    assert raw == b"gif"
    with pytest.raises(ValueError):
        decode_data_uri("not a data uri")
