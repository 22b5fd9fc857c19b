"""Source-to-HTML renderers.

- :class:`MathRenderer` turns ``$…$`` / ``$$…$$`` into KaTeX-ready elements
- :func:`markdown_to_html` is a small CommonMark subset for git-backed pages
- :func:`wikitext_to_html` is a simplified wikitext converter for dump records

None of these aim at full fidelity; they produce stable, readable HTML
whose hash only changes when the source does.
"""

from __future__ import annotations

import html
import re
from urllib.parse import quote

# =============================================================================
# Math
# =============================================================================

_DISPLAY_MATH = re.compile(r"\$\$(.+?)\$\$", re.DOTALL)
_INLINE_MATH = re.compile(r"(?<!\$)\$([^\$\n]+?)\$(?!\$)")
_ARRAY_MACRO = re.compile(r"\\array\{")

KATEX_VERSION = "0.16.9"


def escape_attr(value: str) -> str:
    return html.escape(value, quote=True)


class MathRenderer:
    """Server-side math markup for client-side KaTeX rendering."""

    @staticmethod
    def convert_array(tex: str) -> str:
        """itex ``\\array{…}`` → LaTeX ``\\begin{array}{…}``."""
        return _ARRAY_MACRO.sub(r"\\begin{array}{", tex)

    @staticmethod
    def display(tex: str) -> str:
        escaped = escape_attr(tex.strip())
        return f'<div class="math-display" data-math="{escaped}">\\[{escaped}\\]</div>'

    @staticmethod
    def inline(tex: str) -> str:
        escaped = escape_attr(tex.strip())
        return f'<span class="math-inline" data-math="{escaped}">\\({escaped}\\)</span>'

    def prepare_math(self, content: str) -> str:
        content = self.convert_array(content)
        content = _DISPLAY_MATH.sub(lambda m: self.display(m.group(1)), content)
        return _INLINE_MATH.sub(lambda m: self.inline(m.group(1)), content)

    def extract_math(self, content: str) -> list[tuple[str, str]]:
        """``(kind, tex)`` pairs in document order, display blocks first."""
        found = [
            ("display", m.group(1).strip()) for m in _DISPLAY_MATH.finditer(content)
        ]
        rest = _DISPLAY_MATH.sub("", content)
        found += [("inline", m.group(1).strip()) for m in _INLINE_MATH.finditer(rest)]
        return found

    @staticmethod
    def has_math(content: str) -> bool:
        return "$" in content

    @staticmethod
    def katex_init_script() -> str:
        base = f"https://cdn.jsdelivr.net/npm/katex@{KATEX_VERSION}/dist"
        return (
            f'<link rel="stylesheet" href="{base}/katex.min.css">\n'
            f'<script defer src="{base}/katex.min.js"></script>\n'
            "<script>document.addEventListener('DOMContentLoaded',function(){"
            "document.querySelectorAll('[data-math]').forEach(function(el){"
            "katex.render(el.dataset.math,el,{displayMode:el.classList.contains("
            "'math-display'),throwOnError:false});});});</script>"
        )


# =============================================================================
# Markdown (subset)
# =============================================================================

_MD_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_MD_ULIST = re.compile(r"^\s*[-*+]\s+(.*)$")
_MD_OLIST = re.compile(r"^\s*\d+[.)]\s+(.*)$")
_MD_RULE = re.compile(r"^\s*([-*_])(\s*\1){2,}\s*$")
_MD_FENCE = re.compile(r"^```")
_MD_IMAGE = re.compile(r"!\[([^\]]*)\]\(([^)\s]+)\)")
_MD_LINK = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_MD_WIKILINK = re.compile(r"\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")
_MD_CODE = re.compile(r"`([^`]+)`")
_MD_BOLD = re.compile(r"\*\*(.+?)\*\*|__(.+?)__")
_MD_ITALIC = re.compile(
    r"(?<![\*\w])\*(?!\s)(.+?)(?<!\s)\*(?!\*)"
    r"|(?<!\w)_(?!\s)(.+?)(?<!\s)_(?!\w)"
)
_PLACEHOLDER = re.compile(r"\x00(\d+)\x00")


class _Stash:
    """Holds fragments that inline formatting must not touch."""

    def __init__(self) -> None:
        self.items: list[str] = []

    def put(self, fragment: str) -> str:
        self.items.append(fragment)
        return f"\x00{len(self.items) - 1}\x00"

    def restore(self, text: str) -> str:
        while _PLACEHOLDER.search(text):
            text = _PLACEHOLDER.sub(lambda m: self.items[int(m.group(1))], text)
        return text


def _inline_markdown(text: str, stash: _Stash, link_prefix: str) -> str:
    text = _MD_CODE.sub(
        lambda m: stash.put(f"<code>{html.escape(m.group(1))}</code>"), text
    )
    text = _MD_IMAGE.sub(
        lambda m: stash.put(
            f'<img src="{escape_attr(m.group(2))}" alt="{escape_attr(m.group(1))}">'
        ),
        text,
    )
    text = _MD_WIKILINK.sub(
        lambda m: stash.put(
            f'<a href="{link_prefix}{quote(m.group(1).strip(), safe="")}">'
            f"{html.escape(m.group(2) or m.group(1))}</a>"
        ),
        text,
    )
    text = _MD_LINK.sub(
        lambda m: stash.put(f'<a href="{escape_attr(m.group(2))}">')
        + m.group(1)
        + "</a>",
        text,
    )
    text = _MD_BOLD.sub(lambda m: f"<strong>{m.group(1) or m.group(2)}</strong>", text)
    return _MD_ITALIC.sub(lambda m: f"<em>{m.group(1) or m.group(2)}</em>", text)


def markdown_to_html(
    markdown: str, link_prefix: str = "/", stash: _Stash | None = None
) -> str:
    """Convert a markdown subset: headings, lists, fences, quotes, rules, inline."""
    stash = stash or _Stash()
    out: list[str] = []
    paragraph: list[str] = []
    list_tag: str | None = None
    lines = markdown.replace("\r\n", "\n").split("\n")

    def flush_paragraph() -> None:
        if paragraph:
            body = _inline_markdown(" ".join(paragraph), stash, link_prefix)
            out.append(f"<p>{body}</p>")
            paragraph.clear()

    def close_list() -> None:
        nonlocal list_tag
        if list_tag:
            out.append(f"</{list_tag}>")
            list_tag = None

    i = 0
    while i < len(lines):
        line = lines[i]
        if _MD_FENCE.match(line):
            flush_paragraph()
            close_list()
            code = []
            i += 1
            while i < len(lines) and not _MD_FENCE.match(lines[i]):
                code.append(lines[i])
                i += 1
            out.append(f"<pre><code>{html.escape(chr(10).join(code))}</code></pre>")
            i += 1
            continue

        stripped = line.strip()
        if not stripped:
            flush_paragraph()
            close_list()
        elif heading := _MD_HEADING.match(stripped):
            flush_paragraph()
            close_list()
            level = len(heading.group(1))
            body = _inline_markdown(heading.group(2), stash, link_prefix)
            out.append(f"<h{level}>{body}</h{level}>")
        elif _MD_RULE.match(stripped):
            flush_paragraph()
            close_list()
            out.append("<hr>")
        elif stripped.startswith(">"):
            flush_paragraph()
            close_list()
            body = _inline_markdown(stripped.lstrip("> "), stash, link_prefix)
            out.append(f"<blockquote><p>{body}</p></blockquote>")
        elif (item := _MD_ULIST.match(line)) or (item := _MD_OLIST.match(line)):
            flush_paragraph()
            tag = "ul" if _MD_ULIST.match(line) else "ol"
            if list_tag != tag:
                close_list()
                out.append(f"<{tag}>")
                list_tag = tag
            body = _inline_markdown(item.group(1), stash, link_prefix)
            out.append(f"<li>{body}</li>")
        else:
            close_list()
            paragraph.append(stripped)
        i += 1

    flush_paragraph()
    close_list()
    return stash.restore("\n".join(out))


def render_markdown_with_math(
    content: str, math: MathRenderer | None = None, link_prefix: str = "/"
) -> str:
    """Substitute math first, shielded from inline markdown, then convert."""
    math = math or MathRenderer()
    stash = _Stash()
    shielded = _DISPLAY_MATH.sub(
        lambda m: stash.put(math.display(math.convert_array(m.group(1)))),
        content,
    )
    shielded = _INLINE_MATH.sub(
        lambda m: stash.put(math.inline(math.convert_array(m.group(1)))),
        shielded,
    )
    return markdown_to_html(shielded, link_prefix=link_prefix, stash=stash)


# =============================================================================
# Wikitext (simplified)
# =============================================================================

_WT_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_WT_REF_SELF = re.compile(r"<ref[^>/]*/>", re.IGNORECASE)
_WT_REF = re.compile(r"<ref[^>]*>.*?</ref>", re.IGNORECASE | re.DOTALL)
_WT_TEMPLATE = re.compile(r"\{\{[^{}]*\}\}")
_WT_TABLE = re.compile(r"^\{\|.*?^\|\}", re.DOTALL | re.MULTILINE)
_WT_HEADING = re.compile(r"^(={2,6})\s*(.+?)\s*\1\s*$", re.MULTILINE)
_WT_FILE_LINK = re.compile(
    r"\[\[(?:File|Image|Category):[^\[\]]*(?:\[\[[^\]]*\]\][^\[\]]*)*\]\]",
    re.IGNORECASE,
)
_WT_PIPED_LINK = re.compile(r"\[\[([^\]|]+)\|([^\]]+)\]\]")
_WT_LINK = re.compile(r"\[\[([^\]|]+)\]\]")
_WT_EXTERNAL = re.compile(r"\[(https?://[^\s\]]+)\s+([^\]]+)\]")
_WT_BOLD = re.compile(r"'''(.+?)'''")
_WT_ITALIC = re.compile(r"''(.+?)''")
_WT_TAG = re.compile(r"<[^>]+>")
_WS = re.compile(r"\s+")

ARTICLE_CLASS = "wikipedia-article"


def wiki_slug(title: str) -> str:
    """``Ada Lovelace`` → ``Ada_Lovelace`` (percent-encoded)."""
    return quote(title.strip().replace(" ", "_"), safe="_-.~()',")


def _strip_noise(text: str) -> str:
    text = _WT_COMMENT.sub("", text)
    text = _WT_REF_SELF.sub("", text)
    text = _WT_REF.sub("", text)
    previous = None
    while previous != text:
        previous = text
        text = _WT_TEMPLATE.sub("", text)
    text = _WT_TABLE.sub("", text)
    return _WT_FILE_LINK.sub("", text)


def wikitext_to_html(
    text: str | None, title: str, link_prefix: str = "/wikipedia/"
) -> str:
    """Render wikitext to a self-contained ``<article>``."""
    heading = f"<h1>{html.escape(title)}</h1>"
    if not text or not text.strip():
        return f'<article class="{ARTICLE_CLASS}">{heading}<p>No content</p></article>'

    body = html.escape(_strip_noise(text), quote=False)

    def link(target: str, label: str) -> str:
        # target was escaped with the body; slug the original title
        slug = wiki_slug(html.unescape(target))
        return f'<a href="{link_prefix}{slug}">{label}</a>'

    body = _WT_HEADING.sub(
        lambda m: f"<h{len(m.group(1))}>{m.group(2)}</h{len(m.group(1))}>", body
    )
    body = _WT_PIPED_LINK.sub(lambda m: link(m.group(1), m.group(2)), body)
    body = _WT_LINK.sub(lambda m: link(m.group(1), m.group(1)), body)
    body = _WT_EXTERNAL.sub(r'<a href="\1" rel="external">\2</a>', body)
    body = _WT_BOLD.sub(r"<strong>\1</strong>", body)
    body = _WT_ITALIC.sub(r"<em>\1</em>", body)

    blocks = []
    for block in re.split(r"\n\s*\n", body):
        block = block.strip()
        if not block:
            continue
        if block.startswith("<h"):
            lines = block.split("\n", 1)
            blocks.append(lines[0])
            if len(lines) > 1 and lines[1].strip():
                blocks.append(f"<p>{_WS.sub(' ', lines[1].strip())}</p>")
        else:
            blocks.append(f"<p>{_WS.sub(' ', block)}</p>")
    return f'<article class="{ARTICLE_CLASS}">{heading}{"".join(blocks)}</article>'


def strip_wikitext(text: str) -> str:
    """Plain text with links, emphasis, templates and tags removed."""
    text = _strip_noise(text)
    text = _WT_HEADING.sub(r"\2", text)
    text = _WT_PIPED_LINK.sub(r"\2", text)
    text = _WT_LINK.sub(r"\1", text)
    text = _WT_EXTERNAL.sub(r"\2", text)
    text = text.replace("'''", "").replace("''", "")
    text = _WT_TAG.sub("", text)
    return _WS.sub(" ", html.unescape(text)).strip()


def wikitext_summary(text: str | None, max_length: int = 500) -> str:
    """First prose paragraph as plain text."""
    if not text:
        return ""
    for block in re.split(r"\n\s*\n", _strip_noise(text)):
        block = block.strip()
        if not block or block.startswith("=") or block.startswith("|"):
            continue
        summary = strip_wikitext(block)
        if summary:
            return summary[:max_length]
    return ""
