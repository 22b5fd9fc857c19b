"""Parser for ``{{Infobox …}}`` templates in wikitext.

Parameter values routinely contain nested templates and links that carry
their own ``|`` separators, so both locating the end of the template and
splitting its parameters use depth counters rather than regex.

Example:
    >>> parse("{{Infobox Item|name=[[Dragon|dragon]] sword|value=100}}").to_dict()
    {'infobox_type': 'Item', 'name': 'dragon sword', 'value': '100'}
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from wiki_mirror.ingestion.errors import NoInfoboxError

_START_PATTERN = re.compile(r"\{\{Infobox\s+(\w+)", re.IGNORECASE)
_HEADER_PATTERN = re.compile(r"\A\{\{Infobox\s+\w+\s*", re.IGNORECASE)

_FILE_LINK = re.compile(r"\[\[(?:File|Image):[^\]]*\]\]", re.IGNORECASE)
_PIPED_LINK = re.compile(r"\[\[[^\]|]*\|([^\]]*)\]\]")
_PLAIN_LINK = re.compile(r"\[\[([^\]]*)\]\]")
_INNER_TEMPLATE = re.compile(r"\{\{[^{}]*\}\}")
_HTML_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")

DEFAULT_TYPE = "Unknown"


@dataclass
class Infobox:
    """Parameters of one infobox, keyed by normalized parameter name."""

    infobox_type: str = DEFAULT_TYPE
    params: dict[str, str] = field(default_factory=dict)
    start: int = 0
    end: int = 0

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.params.get(key, default)

    def __getitem__(self, key: str) -> str:
        if key == "infobox_type":
            return self.infobox_type
        return self.params[key]

    def __contains__(self, key: str) -> bool:
        return key == "infobox_type" or key in self.params

    def to_dict(self) -> dict[str, str]:
        return {"infobox_type": self.infobox_type, **self.params}


def find_template_end(text: str, start: int) -> int | None:
    """Index just past the ``}}`` matching the ``{{`` at ``start``.

    Returns None when the template is never closed.
    """
    depth = 0
    i = start
    n = len(text)
    while i < n - 1:
        pair = text[i : i + 2]
        if pair == "{{":
            depth += 1
            i += 2
        elif pair == "}}":
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return None


def split_top_level(body: str) -> list[str]:
    """Split on ``|`` only where neither ``{{}}`` nor ``[[]]`` is open."""
    segments: list[str] = []
    braces = 0
    brackets = 0
    seg_start = 0
    i = 0
    n = len(body)
    while i < n:
        pair = body[i : i + 2]
        if pair == "{{":
            braces += 1
            i += 2
            continue
        if pair == "}}" and braces:
            braces -= 1
            i += 2
            continue
        if pair == "[[":
            brackets += 1
            i += 2
            continue
        if pair == "]]" and brackets:
            brackets -= 1
            i += 2
            continue
        if body[i] == "|" and braces == 0 and brackets == 0:
            segments.append(body[seg_start:i])
            seg_start = i + 1
        i += 1
    segments.append(body[seg_start:])
    return [s for s in segments if s.strip()]


def normalize_key(key: str) -> str:
    return _WHITESPACE.sub("_", key.strip().lower())


def clean_value(value: str) -> str:
    """Strip wiki markup from a parameter value, leaving plain text."""
    value = value.strip()
    value = _FILE_LINK.sub("", value)
    value = _PIPED_LINK.sub(r"\1", value)
    value = _PLAIN_LINK.sub(r"\1", value)
    previous = None
    while previous != value:
        previous = value
        value = _INNER_TEMPLATE.sub("", value)
    value = _HTML_TAG.sub("", value)
    return _WHITESPACE.sub(" ", value).strip()


def _parse_params(body: str) -> dict[str, str]:
    params: dict[str, str] = {}
    for segment in split_top_level(body):
        key, sep, value = segment.partition("=")
        if not sep:
            continue
        key = normalize_key(key)
        if key:
            params[key] = clean_value(value)
    return params


def _parse_from(wikitext: str, pos: int) -> Infobox | None:
    """Parse the first terminated infobox at or after ``pos``."""
    while True:
        match = _START_PATTERN.search(wikitext, pos)
        if match is None:
            return None
        end = find_template_end(wikitext, match.start())
        if end is None:
            # Unterminated; a later infobox may still be well-formed
            pos = match.end()
            continue
        template = wikitext[match.start() : end]
        body = _HEADER_PATTERN.sub("", template, count=1)[:-2]
        return Infobox(
            infobox_type=match.group(1) or DEFAULT_TYPE,
            params=_parse_params(body),
            start=match.start(),
            end=end,
        )


def parse(wikitext: str) -> Infobox:
    """Return the first infobox in ``wikitext``.

    Raises:
        NoInfoboxError: if there is no terminated infobox
    """
    infobox = _parse_from(wikitext or "", 0)
    if infobox is None:
        raise NoInfoboxError("no infobox")
    return infobox


def parse_all(wikitext: str) -> list[Infobox]:
    """Every infobox in document order."""
    found: list[Infobox] = []
    pos = 0
    text = wikitext or ""
    while (infobox := _parse_from(text, pos)) is not None:
        found.append(infobox)
        pos = infobox.end
    return found


def extract_fields(wikitext: str, fields: list[str]) -> dict[str, str | None]:
    """Pick selected fields from the first infobox; None where missing."""
    try:
        infobox = parse(wikitext)
    except NoInfoboxError:
        return dict.fromkeys(fields)
    return {name: infobox.get(normalize_key(name)) for name in fields}
