"""Split a catalog video into hook / script / cta text fragments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Optional

HOOK_TOKEN_LIMIT = 20
CTA_TRAILING_LINES = 2

CTA_KEYWORDS = (
    # en
    "follow",
    "comment",
    "link",
    "subscribe",
    "like",
    "save this",
    "share",
    # es
    "sígueme",
    "sigueme",
    "comenta",
    "enlace",
    "suscríbete",
    "suscribete",
    "dale like",
    "guárdalo",
    "guarda",
    "comparte",
)

SPANISH_STOP_WORDS = {
    "el", "la", "de", "que", "y", "en", "un", "una", "es", "se", "no", "te", "lo", "le",
    "su", "por", "son", "con", "para", "al", "del", "está", "cuando", "muy", "sin", "sobre",
    "también", "me", "hasta", "hay", "donde", "desde", "todo", "nos", "esto", "yo", "tu",
    "mi", "mis", "tus", "eso", "esa", "este", "pero", "más", "como",
}

_CTA_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(keyword) for keyword in CTA_KEYWORDS) + r")\b",
    re.IGNORECASE | re.UNICODE,
)


@dataclass(frozen=True)
class ContentFragment:
    content_type: str  # hook, script, cta
    content: str
    section_tag: str
    language: str


def _clean(value: Any) -> str:
    return str(value or "").strip()


def _field(video: Any, name: str) -> Any:
    if isinstance(video, dict):
        return video.get(name)
    return getattr(video, name, None)


def detect_language(text: str) -> str:
    """Stop-word ratio heuristic: 'es' above 10% Spanish function words, else 'en'."""
    words = re.findall(r"\w+", text.lower())
    if not words:
        return "en"
    spanish = sum(1 for word in words if word in SPANISH_STOP_WORDS)
    return "es" if spanish / len(words) > 0.1 else "en"


def has_cta_keyword(text: str) -> bool:
    return bool(_CTA_PATTERN.search(text or ""))


def _hook_from_script(script: str) -> str:
    tokens = script.split()
    return " ".join(tokens[:HOOK_TOKEN_LIMIT])


def _cta_from_script(script: str) -> Optional[str]:
    lines = [line.strip() for line in script.splitlines() if line.strip()]
    if len(lines) < 2:
        # Single-paragraph scripts: fall back to the last two sentences.
        lines = [part.strip() for part in re.split(r"(?<=[.!?])\s+", script) if part.strip()]
    if len(lines) < 2:
        return None
    trailing = lines[-CTA_TRAILING_LINES:]
    if not any(has_cta_keyword(line) for line in trailing):
        return None
    return "\n".join(trailing)


def extract_fragments(video: Any) -> List[ContentFragment]:
    """
    Return zero to three fragments for a video record (ORM row, schema or dict).

    A record with no usable text yields an empty list.
    """
    hook = _clean(_field(video, "hook"))
    script = _clean(_field(video, "script"))
    explicit_cta = _clean(_field(video, "cta_text"))

    fragments: List[ContentFragment] = []

    hook_text = hook or (_hook_from_script(script) if script else "")
    if hook_text:
        fragments.append(ContentFragment("hook", hook_text, "hook_0_3s", detect_language(hook_text)))

    if script:
        fragments.append(ContentFragment("script", script, "body", detect_language(script)))

    cta_text = explicit_cta or (_cta_from_script(script) if script else None)
    if cta_text:
        fragments.append(ContentFragment("cta", cta_text, "cta_end", detect_language(cta_text)))

    return fragments
