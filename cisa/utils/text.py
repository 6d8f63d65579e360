import re

from cisa.core.constants import TEXT_ANSWER_MAX_CHARS

HTML_TAG_RE = re.compile(r"<[^>]*>")
UNSAFE_CHARS_RE = re.compile(r"[<>\"']")
FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)


def sanitize_text(value: str | None, max_chars: int = TEXT_ANSWER_MAX_CHARS) -> str:
    if not value:
        return ""
    cleaned = UNSAFE_CHARS_RE.sub("", HTML_TAG_RE.sub("", str(value)))
    return cleaned[:max_chars]


def strip_code_fences(text: str) -> str:
    return FENCE_RE.sub("", text or "").strip()
