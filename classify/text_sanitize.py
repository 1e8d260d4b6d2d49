"""Text sanitization before sending paper text to the LLM API.

Handles unicode characters that can cause encoding errors in HTTP clients.
"""


def sanitize_for_llm(text: str) -> str:
    """Sanitize text for LLM API calls.

    - U+2028 (LINE SEPARATOR) - replaced with newline
    - U+2029 (PARAGRAPH SEPARATOR) - replaced with double newline
    - CRLF / CR - normalized to newline
    - Other control characters - stripped (tab and newline kept)

    Args:
        text: Input text string

    Returns:
        Sanitized text string
    """
    if not text:
        return ""

    text = text.replace("\u2028", "\n")  # LINE SEPARATOR
    text = text.replace("\u2029", "\n\n")  # PARAGRAPH SEPARATOR
    text = text.replace("\r\n", "\n")
    text = text.replace("\r", "\n")

    return "".join(ch for ch in text if ord(ch) >= 0x20 or ch in ("\t", "\n"))
