from __future__ import annotations

PARAGRAPH_BREAK = "\n\n"
LINE_BREAK = "\n"


def _split_point(window: str, max_length: int) -> int:
    half = max_length / 2
    split_at = window.rfind(PARAGRAPH_BREAK)
    if split_at < half:
        split_at = window.rfind(LINE_BREAK)
    if split_at < half:
        split_at = max_length
    return split_at


def split_long_text(text: str, max_length: int) -> list[str]:
    """Split ``text`` into chunks of at most ``max_length`` characters.

    Prefers the last paragraph break in each window, then the last line
    break, and cuts hard at ``max_length`` when neither falls in the second
    half of the window. Text that already fits is returned unchanged.
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    remaining = text
    while len(remaining) > max_length:
        split_at = _split_point(remaining[:max_length], max_length)
        chunk = remaining[:split_at].rstrip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[split_at:].lstrip()

    if remaining.strip():
        chunks.append(remaining.rstrip())
    return chunks
