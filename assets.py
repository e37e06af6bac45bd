import base64
import io
import logging

from bs4 import BeautifulSoup
from PIL import Image

from models import GeneratedImage
from system_prompt import IMAGE_PROMPT_SUFFIX

logger = logging.getLogger(__name__)

PROMPT_ATTR = "data-image-prompt"


def encode_image_data_uri(raw_bytes, mime="image/png", max_side=1024):
    """Shrink an image to fit ``max_side`` and return it as a data URI.

    Opaque images are re-encoded as JPEG, images with transparency stay PNG.
    """
    img = Image.open(io.BytesIO(raw_bytes))
    img.thumbnail((max_side, max_side), Image.LANCZOS)

    has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)
    buf = io.BytesIO()
    if has_alpha:
        img.save(buf, format="PNG", optimize=True)
        mime = "image/png"
    else:
        img.convert("RGB").save(buf, format="JPEG", quality=85)
        mime = "image/jpeg"
    b64 = base64.b64encode(buf.getvalue()).decode("utf-8")
    return f"data:{mime};base64,{b64}"


def decode_data_uri(data_uri):
    """Split a data URI into (mime, raw bytes). Raises ValueError when malformed."""
    try:
        header, b64 = data_uri.split(",", 1)
        mime = header.split(":")[1].split(";")[0]
        return mime, base64.b64decode(b64)
    except (IndexError, ValueError) as e:
        raise ValueError("Invalid data URI") from e


def resolve_assets(html, generate_image):
    """Swap every ``<img data-image-prompt>`` placeholder for a generated image.

    ``generate_image`` is called once per matching element, in document order,
    and returns a data URI or None. Failures leave the placeholder in place.
    Returns the new HTML and the list of GeneratedImage records.
    """
    soup = BeautifulSoup(html, "html.parser")
    targets = soup.find_all("img", attrs={PROMPT_ATTR: True})
    if not targets:
        return html, []

    images = []
    for img in targets:
        description = img[PROMPT_ATTR].strip()
        try:
            url = generate_image(description + IMAGE_PROMPT_SUFFIX)
        except Exception as e:
            logger.warning("Image generation failed for %r: %s", description, e)
            continue
        if not url:
            logger.warning("No image returned for %r, keeping placeholder", description)
            continue
        img["src"] = url
        del img[PROMPT_ATTR]
        images.append(GeneratedImage(prompt=description, url=url))

    logger.info("Resolved %d of %d images", len(images), len(targets))
    return str(soup), images
