"""Utility helper functions."""

from __future__ import annotations

import base64
import secrets
import string
from typing import Any, Dict, List, Optional

SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits
SESSION_ID_LENGTH = 8


def generate_session_id() -> str:
    """Short, subdomain-safe session token (used in preview branch names)."""
    return "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))


def build_preview_url(
    artifact_name: str,
    content_org: str,
    content_site: str,
    preview_host: str,
    branch_ref: Optional[str] = None,
    content_path: Optional[str] = None,
) -> str:
    """Preview location used when the preview push does not return one."""
    path = content_path or f"/preview/{artifact_name}"
    return f"https://{branch_ref or 'main'}--{content_site}--{content_org}.{preview_host}{path}"


def normalize_design_tokens(extracted: Optional[Dict[str, Any]]) -> Dict[str, List[Dict[str, str]]]:
    """
    Flatten an extracted design into ``{"colors": [...], "fonts": [...]}`` pairs.

    Colors keep only non-empty string values. Fonts come from the downloaded
    font list (``family`` or ``name``), de-duplicated; the declared body and
    heading fonts are used only when that list is empty.
    """
    design = extracted or {}
    colors = design.get("colors") or {}
    typography = design.get("typography") or {}
    fonts = design.get("fonts") or []

    color_tokens = [
        {"name": name, "value": value}
        for name, value in colors.items()
        if value and isinstance(value, str)
    ]

    font_tokens: List[Dict[str, str]] = []
    seen = set()
    for font in fonts:
        if isinstance(font, dict):
            family = font.get("family") or font.get("name")
        else:
            family = font
        if not family or family in seen:
            continue
        seen.add(family)
        font_tokens.append({"name": family, "value": family})

    if not font_tokens:
        if typography.get("bodyFont"):
            font_tokens.append({"name": "Body", "value": typography["bodyFont"]})
        if typography.get("headingFont"):
            font_tokens.append({"name": "Heading", "value": typography["headingFont"]})

    return {"colors": color_tokens, "fonts": font_tokens}


def decode_data_url(data_url: str) -> bytes:
    """Decode a ``data:image/png;base64,...`` URL into raw bytes."""
    _, _, encoded = data_url.partition(",")
    return base64.b64decode(encoded)


def encode_data_url(image: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
