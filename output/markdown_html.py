"""Markdown to email-safe HTML conversion.

Produces HTML with inline styles (email clients ignore stylesheets), links
arXiv identifiers to their abstract pages, and runs a sanitization pass so
that paper titles and summaries cannot inject script into the report.
"""

import html
import logging
import re
from typing import List, Tuple

logger = logging.getLogger(__name__)

STYLES = {
    "h1": "font-size: 24px; font-weight: bold; margin: 20px 0 16px 0; color: #333;",
    "h2": "font-size: 20px; font-weight: bold; margin: 16px 0 12px 0; color: #333;",
    "h3": "font-size: 18px; font-weight: bold; margin: 14px 0 10px 0; color: #333;",
    "h4": "font-size: 16px; font-weight: bold; margin: 12px 0 8px 0; color: #333;",
    "h5": "font-size: 14px; font-weight: bold; margin: 12px 0 8px 0; color: #333;",
    "h6": "font-size: 13px; font-weight: bold; margin: 12px 0 8px 0; color: #666;",
    "p": "margin: 12px 0; line-height: 1.6; color: #333;",
    "a": "color: #0066cc; text-decoration: underline;",
    "ul": "margin: 12px 0; padding-left: 24px; color: #333;",
    "ol": "margin: 12px 0; padding-left: 24px; color: #333;",
    "li": "margin: 4px 0; line-height: 1.6;",
    "code": (
        "background-color: #f5f5f5; padding: 2px 4px; border-radius: 3px; "
        "font-family: monospace; font-size: 90%; color: #e74c3c;"
    ),
    "pre": (
        "background-color: #f5f5f5; padding: 12px; border-radius: 4px; "
        "overflow-x: auto; margin: 12px 0;"
    ),
    "pre_code": "font-family: monospace; font-size: 13px; color: #333;",
    "blockquote": (
        "border-left: 4px solid #ddd; margin: 12px 0; padding: 8px 16px; "
        "color: #666; font-style: italic;"
    ),
    "hr": "border: none; border-top: 1px solid #ddd; margin: 20px 0;",
}

ARXIV_ABS_URL = "https://arxiv.org/abs/{}"

# Block-level patterns
FENCE_PATTERN = re.compile(r"^\s{0,3}```\s*([\w+-]*)\s*$")
HEADING_PATTERN = re.compile(r"^\s{0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
HR_PATTERN = re.compile(r"^\s{0,3}([-*_])(\s*\1){2,}\s*$")
BLOCKQUOTE_PATTERN = re.compile(r"^\s{0,3}>\s?(.*)$")
LIST_ITEM_PATTERN = re.compile(r"^(\s*)([-*+]|\d+[.)])\s+(.*)$")

# Inline patterns (applied to already-escaped text)
CODE_SPAN_PATTERN = re.compile(r"`([^`]+)`")
LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
AUTOLINK_PATTERN = re.compile(r"\bhttps?://[^\s<>\"]+")
ARXIV_ID_PATTERN = re.compile(r"(?<![\w./])((?i:arxiv:)?)(\d{4}\.\d{4,5}(?:v\d+)?)(?!\d)(?!\.\d)")
BOLD_PATTERN = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*|__(?=\S)(.+?)(?<=\S)__")
ITALIC_PATTERN = re.compile(
    r"(?<![*\w])\*(?=[^\s*])(.+?)(?<=[^\s*])\*(?![*\w])|(?<![_\w])_(?=[^\s_])(.+?)(?<=[^\s_])_(?![_\w])"
)
PLACEHOLDER_PATTERN = re.compile(r"\x00(\d+)\x00")

# Sanitization patterns
SCRIPT_BLOCK_PATTERN = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
DANGEROUS_TAG_PATTERN = re.compile(r"</?(?:script|iframe|object|embed|frame|frameset|applet)\b[^>]*>", re.IGNORECASE)
TAG_SPLIT_PATTERN = re.compile(r"(<[^>]*>)")
EVENT_ATTR_PATTERN = re.compile(r"""\s+on[a-z]+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)""", re.IGNORECASE)
URL_ATTR_PATTERN = re.compile(
    r"""(\s(?:href|src|action|formaction|xlink:href|background)\s*=\s*)(?:"([^"]*)"|'([^']*)'|([^\s>]+))""",
    re.IGNORECASE,
)
UNSAFE_SCHEME_PATTERN = re.compile(r"^(?:javascript|vbscript|data):", re.IGNORECASE)
TEXT_SCHEME_PATTERN = re.compile(r"\b(javascript|vbscript|data)(\s*):", re.IGNORECASE)
TEXT_EVENT_PATTERN = re.compile(r"\b(on[a-z]+)(\s*)=", re.IGNORECASE)
SAFE_SCHEMES = ("http", "https", "mailto")


def _open(tag: str, style_key: str = None) -> str:
    return f'<{tag} style="{STYLES[style_key or tag]}">'


def _is_unsafe_url(url: str) -> bool:
    # Browsers ignore whitespace and control characters inside the scheme
    compact = re.sub(r"[\s\x00-\x1f]+", "", html.unescape(url))
    return bool(UNSAFE_SCHEME_PATTERN.match(compact))


def _resolve_href(escaped_url: str) -> str:
    """Turn a markdown link target into a safe, escaped href value."""
    url = html.unescape(escaped_url).strip()
    arxiv_match = re.fullmatch(r"(?i:arxiv:)?(\d{4}\.\d{4,5}(?:v\d+)?)", url)
    if arxiv_match:
        return ARXIV_ABS_URL.format(arxiv_match.group(1))
    if _is_unsafe_url(url):
        return "#"
    scheme_match = re.match(r"^([a-zA-Z][a-zA-Z0-9+.-]*):", url)
    if scheme_match and scheme_match.group(1).lower() not in SAFE_SCHEMES:
        return "#"
    return html.escape(url, quote=True)


def _anchor(href: str, text: str) -> str:
    return f'<a href="{href}" style="{STYLES["a"]}">{text}</a>'


def _emphasis(text: str) -> str:
    text = BOLD_PATTERN.sub(lambda m: f"<strong>{m.group(1) or m.group(2)}</strong>", text)
    text = ITALIC_PATTERN.sub(lambda m: f"<em>{m.group(1) or m.group(2)}</em>", text)
    return text


def render_inline(text: str) -> str:
    """Render inline markdown (code, links, arXiv ids, emphasis) to HTML.

    The input is escaped first; generated tags are kept out of later passes
    with placeholders so that nothing is wrapped twice.
    """
    stash: List[str] = []

    def keep(fragment: str) -> str:
        stash.append(fragment)
        return f"\x00{len(stash) - 1}\x00"

    text = html.escape(text.replace("\x00", ""), quote=True)

    text = CODE_SPAN_PATTERN.sub(lambda m: keep(f'{_open("code")}{m.group(1)}</code>'), text)
    text = LINK_PATTERN.sub(
        lambda m: keep(_anchor(_resolve_href(m.group(2)), _emphasis(m.group(1)))), text
    )

    def autolink(match: re.Match) -> str:
        url = match.group(0)
        trailing = ""
        # Quotes and brackets were escaped to entities; they end the URL
        cut = re.search(r"&(?:quot|#x27|lt|gt);", url)
        if cut:
            url, trailing = url[: cut.start()], url[cut.start() :]
        while url and url[-1] in ".,;:!?)'":
            trailing = url[-1] + trailing
            url = url[:-1]
        return keep(_anchor(_resolve_href(url), url)) + trailing

    text = AUTOLINK_PATTERN.sub(autolink, text)
    text = ARXIV_ID_PATTERN.sub(
        lambda m: keep(_anchor(ARXIV_ABS_URL.format(m.group(2)), m.group(0))), text
    )
    text = _emphasis(text)

    # Placeholders can nest (a code span inside link text)
    while PLACEHOLDER_PATTERN.search(text):
        text = PLACEHOLDER_PATTERN.sub(lambda m: stash[int(m.group(1))], text)
    return text


def _indent_width(prefix: str) -> int:
    return len(prefix.replace("\t", "    "))


def _render_list(items: List[Tuple[int, bool, str]], pos: int) -> Tuple[str, int]:
    """Render list items starting at pos; deeper-indented items become nested lists."""
    base_indent, ordered, _ = items[pos]
    tag = "ol" if ordered else "ul"
    parts: List[str] = []

    while pos < len(items):
        indent, item_ordered, text = items[pos]
        if indent < base_indent:
            break
        if indent > base_indent:
            nested, pos = _render_list(items, pos)
            if parts:
                parts[-1] = parts[-1][: -len("</li>")] + nested + "</li>"
            else:
                parts.append(f'{_open("li")}{nested}</li>')
            continue
        if item_ordered != ordered:
            break
        parts.append(f'{_open("li")}{text}</li>')
        pos += 1

    return f'{_open(tag)}{"".join(parts)}</{tag}>', pos


def _starts_block(line: str) -> bool:
    return bool(
        FENCE_PATTERN.match(line)
        or HEADING_PATTERN.match(line)
        or HR_PATTERN.match(line)
        or BLOCKQUOTE_PATTERN.match(line)
        or LIST_ITEM_PATTERN.match(line)
    )


def _render_blocks(lines: List[str]) -> List[str]:
    blocks: List[str] = []
    i = 0
    n = len(lines)

    while i < n:
        line = lines[i]
        if not line.strip():
            i += 1
            continue

        fence = FENCE_PATTERN.match(line)
        if fence:
            i += 1
            code_lines = []
            while i < n and not FENCE_PATTERN.match(lines[i]):
                code_lines.append(lines[i])
                i += 1
            i += 1  # closing fence (or end of input)
            code = html.escape("\n".join(code_lines), quote=True)
            blocks.append(f'{_open("pre")}{_open("code", "pre_code")}{code}</code></pre>')
            continue

        heading = HEADING_PATTERN.match(line)
        if heading:
            tag = f"h{len(heading.group(1))}"
            blocks.append(f"{_open(tag)}{render_inline(heading.group(2))}</{tag}>")
            i += 1
            continue

        if HR_PATTERN.match(line):
            blocks.append(f'<hr style="{STYLES["hr"]}">')
            i += 1
            continue

        if BLOCKQUOTE_PATTERN.match(line):
            quoted = []
            while i < n and BLOCKQUOTE_PATTERN.match(lines[i]):
                quoted.append(BLOCKQUOTE_PATTERN.match(lines[i]).group(1))
                i += 1
            inner = "".join(_render_blocks(quoted))
            blocks.append(f'{_open("blockquote")}{inner}</blockquote>')
            continue

        if LIST_ITEM_PATTERN.match(line):
            items: List[Tuple[int, bool, str]] = []
            while i < n:
                current = lines[i]
                item = LIST_ITEM_PATTERN.match(current)
                if item:
                    marker = item.group(2)
                    items.append((_indent_width(item.group(1)), marker[0].isdigit(), render_inline(item.group(3))))
                    i += 1
                elif current.strip() and current[0] in " \t" and items:
                    # Continuation line of the previous item
                    indent, ordered, text = items[-1]
                    items[-1] = (indent, ordered, f"{text}<br>{render_inline(current.strip())}")
                    i += 1
                elif not current.strip():
                    # A blank line ends the list unless another item follows
                    j = i
                    while j < n and not lines[j].strip():
                        j += 1
                    if j < n and LIST_ITEM_PATTERN.match(lines[j]):
                        i = j
                    else:
                        break
                else:
                    break

            pos = 0
            while pos < len(items):
                rendered, pos = _render_list(items, pos)
                blocks.append(rendered)
            continue

        paragraph = [line.strip()]
        i += 1
        while i < n and lines[i].strip() and not _starts_block(lines[i]):
            paragraph.append(lines[i].strip())
            i += 1
        blocks.append(f'{_open("p")}{"<br>".join(render_inline(p) for p in paragraph)}</p>')

    return blocks


def _sanitize_tag(tag: str) -> str:
    tag = EVENT_ATTR_PATTERN.sub("", tag)

    def check_url(match: re.Match) -> str:
        value = next(v for v in match.groups()[1:] if v is not None)
        if _is_unsafe_url(value):
            return f'{match.group(1)}"#"'
        return match.group(0)

    return URL_ATTR_PATTERN.sub(check_url, tag)


def _sanitize_text(text: str) -> str:
    # Entity-encode the separators so the text reads the same but no longer
    # contains an executable-looking scheme or handler
    text = TEXT_SCHEME_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}&#58;", text)
    text = TEXT_EVENT_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}&#61;", text)
    return text


def sanitize_html(markup: str) -> str:
    """Remove script, event handlers and unsafe URLs from HTML.

    - <script> elements (with content) and other embedding tags are dropped
    - on* attributes are removed from every tag
    - href/src values using javascript:, vbscript: or data: become "#"
    - the same schemes and handlers appearing as plain text are entity-encoded
    """
    if not markup:
        return ""

    markup = SCRIPT_BLOCK_PATTERN.sub("", markup)
    markup = DANGEROUS_TAG_PATTERN.sub("", markup)

    parts = TAG_SPLIT_PATTERN.split(markup)
    cleaned = []
    for part in parts:
        if part.startswith("<") and part.endswith(">"):
            cleaned.append(_sanitize_tag(part))
        else:
            cleaned.append(_sanitize_text(part))
    return "".join(cleaned)


def markdown_to_html(markdown: str) -> str:
    """Convert markdown to sanitized HTML with inline styles.

    Args:
        markdown: Markdown source

    Returns:
        HTML fragment, or "" for empty/whitespace-only input
    """
    if not markdown or not markdown.strip():
        return ""

    lines = markdown.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return sanitize_html("\n".join(_render_blocks(lines)))


def markdown_to_text(markdown: str) -> str:
    """Derive a plain-text version of a markdown document (email fallback part)."""
    if not markdown:
        return ""

    lines = []
    for line in markdown.replace("\r\n", "\n").split("\n"):
        if FENCE_PATTERN.match(line):
            continue
        heading = HEADING_PATTERN.match(line)
        if heading:
            line = heading.group(2).upper() if len(heading.group(1)) <= 2 else heading.group(2)
        quote = BLOCKQUOTE_PATTERN.match(line)
        if quote:
            line = quote.group(1)
        line = LINK_PATTERN.sub(lambda m: f"{m.group(1)} ({m.group(2)})", line)
        line = re.sub(r"\*\*(.+?)\*\*|__(.+?)__", lambda m: m.group(1) or m.group(2), line)
        line = re.sub(r"(?<![*\w])\*(?=\S)(.+?)(?<=\S)\*(?![*\w])", r"\1", line)
        line = CODE_SPAN_PATTERN.sub(r"\1", line)
        lines.append(line.rstrip())

    text = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", text).strip() + "\n"
