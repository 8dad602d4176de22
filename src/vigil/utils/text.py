"""
Text utility functions.
"""

import re

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_SECRET_TAG_RE = re.compile(r"<secret>(.*?)</secret>")


def extract_json_from_markdown(text: str) -> str:
    """
    Extract JSON content from markdown code blocks or raw text.

    Args:
        text: Input text that might contain markdown code blocks

    Returns:
        The extracted JSON string
    """
    text = text.strip()

    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()

    # Handle optional "json" prefix without backticks
    if text.startswith("json"):
        text = text[4:].strip()

    return text


def find_secret_placeholders(text: str) -> list[str]:
    """Names used in <secret>name</secret> placeholders, in order of appearance."""
    return _SECRET_TAG_RE.findall(text)


def replace_secret_placeholders(text: str, secrets: dict[str, str]) -> tuple[str, set[str], set[str]]:
    """
    Substitute <secret>name</secret> placeholders.

    Returns:
        (new text, names replaced, names with no value)
    """
    replaced: set[str] = set()
    missing: set[str] = set()

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in secrets and secrets[name]:
            replaced.add(name)
            return secrets[name]
        missing.add(name)
        return match.group(0)

    return _SECRET_TAG_RE.sub(_sub, text), replaced, missing


def truncate(text: str, limit: int = 80) -> str:
    """Cut text to limit characters, marking the cut with '...'."""
    return text if len(text) <= limit else text[:limit] + "..."
