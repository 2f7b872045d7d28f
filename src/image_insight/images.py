"""Turn uploaded files into base64 pipeline requests."""

from __future__ import annotations

import base64
import binascii
import io
import mimetypes
import os
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .domain.models import PipelineRequest
from .errors import PreconditionNotMet
from .logging import get_logger

LOG = get_logger("images")

DEFAULT_MIME = "image/png"


def guess_image_mime(filename: Optional[str], declared: Optional[str] = None) -> str:
    """Return an image/* MIME type, preferring the declared one."""
    if declared and declared.lower().startswith("image/"):
        return declared.lower()
    if filename:
        mime, _ = mimetypes.guess_type(filename)
        if mime and mime.startswith("image/"):
            return mime
        ext = os.path.splitext(filename)[1].lower()
        if ext in {".jpg", ".jpeg", ".jpe", ".jfif"}:
            return "image/jpeg"
    return DEFAULT_MIME


def sniff_image_mime(raw: bytes) -> str:
    """Return the MIME type Pillow detects for ``raw``; raises if it is not an image."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise PreconditionNotMet(f"Uploaded file is not a recognizable image: {exc}") from exc
    return Image.MIME.get(fmt or "", DEFAULT_MIME)


def request_from_bytes(raw: bytes, *, filename: Optional[str] = None, mime_type: Optional[str] = None) -> PipelineRequest:
    if not raw:
        raise PreconditionNotMet("Uploaded image is empty")
    # content wins over the declared type or file extension
    mime = sniff_image_mime(raw)
    if mime_type and mime_type.lower() != mime:
        LOG.debug(f"Declared type {mime_type} differs from detected {mime}")
    LOG.debug(f"Encoded image {filename or '<upload>'} ({len(raw)} bytes, {mime})")
    return PipelineRequest(data=base64.b64encode(raw).decode("ascii"), mime_type=mime)


def request_from_base64(data: str, *, mime_type: Optional[str] = None) -> PipelineRequest:
    """Accept plain base64 or a ``data:<mime>;base64,<payload>`` URL."""
    text = (data or "").strip()
    if text.startswith("data:") and "," in text:
        header, text = text.split(",", 1)
        declared = header[5:].split(";", 1)[0]
        mime_type = mime_type or declared
    if not text:
        raise PreconditionNotMet("No image data supplied")
    try:
        base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PreconditionNotMet(f"Image data is not valid base64: {exc}") from exc
    return PipelineRequest(data=text, mime_type=guess_image_mime(None, mime_type))


def request_from_path(path: str) -> PipelineRequest:
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as exc:
        raise PreconditionNotMet(f"Unable to read image {path}: {exc}") from exc
    return request_from_bytes(raw, filename=os.path.basename(path))
