"""Test fixtures for ingestion tests.

Everything runs offline: HTTP sessions are MagicMocks returning canned
payloads, git/wget subprocesses are patched, and the dump reader is fed
plain XML through ``cat`` instead of ``bzcat``.

Fixtures:
- Sample MediaWiki API payloads, wikitext, dump XML, git pages, site HTML
- In-memory Stores
- Zero-interval rate limiters
- Mock requests sessions
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock

import pytest

# =============================================================================
# Sample wikitext and HTML
# =============================================================================

WHIP_WIKITEXT = """\
{{Infobox Item
|name = Abyssal whip
|image = [[File:Abyssal whip.png]]
|release = 2005-01-26
|members = Yes
|tradeable = Yes
|equipable = Yes
|stackable = No
|highalch = 72,000
|lowalch = 48,000
|value = 120,001
|weight = 0.453 kg
|examine = A weapon from the [[Abyss|abyss]].
|id = 4151
}}
{{Infobox Bonuses
|astab = 0
|aslash = +82
|str = +82
}}
The '''abyssal whip''' is a one-handed melee weapon.
"""

WHIP_HTML = (
    '<div class="mw-parser-output"><p>The <b>abyssal whip</b> is a '
    "one-handed melee weapon.</p></div>"
)

DRAGON_MONSTER_WIKITEXT = """\
{{Infobox Monster
|name = Green dragon
|combat = 79
|hitpoints = 75
|max_hit = 8
|attack_style = [[Melee]], [[Dragonfire]]
|slayer_level = 1
|slayer_xp = 75.0
|location = [[Wilderness]]; [[Myths' Guild]], Corsair Cove
|id = 260
}}
"""

# =============================================================================
# MediaWiki API payloads
# =============================================================================


def parse_payload(
    title: str = "Abyssal whip",
    html: str = WHIP_HTML,
    wikitext: str = WHIP_WIKITEXT,
    pageid: int = 4151,
    revid: int = 900001,
) -> dict[str, Any]:
    return {
        "parse": {
            "title": title,
            "pageid": pageid,
            "revid": revid,
            "text": {"*": html},
            "wikitext": {"*": wikitext},
        }
    }


MISSING_TITLE_PAYLOAD = {
    "error": {"code": "missingtitle", "info": "The page you specified doesn't exist."}
}

BAD_PARAM_PAYLOAD = {"error": {"code": "badvalue", "info": "Unrecognized value"}}


def make_response(
    payload: Any = None, status: int = 200, text: str | None = None
) -> MagicMock:
    """A requests.Response stand-in."""
    response = MagicMock()
    response.status_code = status
    if text is None:
        text = json.dumps(payload) if payload is not None else ""
    response.text = text
    if payload is not None:
        response.json.return_value = payload
    else:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    return response


def allpages_pages(titles: list[str], per_call: int) -> list[dict[str, Any]]:
    """Split titles into continuation-linked allpages responses."""
    pages = []
    for i in range(0, len(titles), per_call):
        chunk = titles[i : i + per_call]
        payload: dict[str, Any] = {
            "query": {
                "allpages": [{"title": t, "pageid": n} for n, t in enumerate(chunk)]
            }
        }
        if i + per_call < len(titles):
            payload["continue"] = {
                "apcontinue": titles[i + per_call],
                "continue": "-||",
            }
        pages.append(payload)
    return pages


# =============================================================================
# Dump XML
# =============================================================================

DUMP_XML = """\
<mediawiki xmlns="http://www.mediawiki.org/xml/export-0.10/" version="0.10">
  <siteinfo>
    <sitename>Wikipedia</sitename>
  </siteinfo>
  <page>
    <title>Ada Lovelace</title>
    <ns>0</ns>
    <id>42</id>
    <revision>
      <id>1000</id>
      <text bytes="200" xml:space="preserve">'''Ada Lovelace''' was an English [[mathematician]].{{Infobox person|name=Ada}}

== Early life ==
Born in [[London|the capital]]&lt;ref&gt;Toole&lt;/ref&gt;.

[[Category:Mathematicians]]
[[category: 1815 births|Lovelace]]</text>
    </revision>
  </page>
  <page>
    <title>Talk:Ada Lovelace</title>
    <ns>1</ns>
    <id>43</id>
    <revision><id>1001</id><text>Discussion</text></revision>
  </page>
  <page>
    <title>Lovelace</title>
    <ns>0</ns>
    <id>44</id>
    <redirect title="Ada Lovelace" />
    <revision><id>1002</id><text>#REDIRECT [[Ada Lovelace]]</text></revision>
  </page>
  <page>
    <title>Charles Babbage</title>
    <ns>0</ns>
    <id>45</id>
    <revision><id>1003</id><text>'''Charles Babbage''' was a polymath.

[[Category:Computer pioneers]]</text></revision>
  </page>
  <page>
    <title>AT&amp;T</title>
    <ns>0</ns>
    <id>46</id>
    <revision><id>1004</id><text>A company. [[Category:Companies]]</text></revision>
  </page>
</mediawiki>
"""

# =============================================================================
# Git-backed pages
# =============================================================================

NLAB_CONTENT = """\
---
title: Category theory
categories: mathematics, foundations
---
# Idea

A **category** has objects and morphisms $f \\colon x \\to y$.

$$
\\array{a & b \\\\ c & d}
$$

See also [[functor]] and [nLab](https://ncatlab.org).
"""

NLAB_NO_HEADER = "Just a body with no front matter.\n"

# =============================================================================
# Mirrored / archived site HTML
# =============================================================================

VM_WIKI = "http://wiki.vintagemachinery.org"

VM_PAGE_HTML = """\
<html>
<head><title>Delta Unisaw</title><script>var x = 1;</script></head>
<body>
<nav><a href="/">Home</a></nav>
<div id="menu">Menu</div>
<div id="content">
<h2>Delta Unisaw</h2>
<p>A cabinet saw. See <a href="/pubs/1234.html">the manual</a>
or <a href="https://example.com/other">elsewhere</a> or <a href="#top">top</a>.</p>
<img src="/images/unisaw.jpg" alt="Unisaw">
<img src="thumbs/small.png" alt="thumb">
<img src="data:image/png;base64,AAAA" alt="inline">
</div>
<footer>Copyright</footer>
</body>
</html>
"""

WAYBACK_PAGE_HTML = """\
<html>
<head><title>Powermatic 66 - VintageMachinery.org Knowledge Base</title></head>
<body>
<div class="sidebar">links</div>
<div id="content">
<p>The <a href="https://web.archive.org/web/20150101000000/http://wiki.vintagemachinery.org/Delta.ashx">Delta</a>
comparison.</p>
<img src="https://web.archive.org/web/20150101000000im_/http://wiki.vintagemachinery.org/img/pm66.jpg">
</div>
</body>
</html>
"""

CDX_ROWS = [
    ["timestamp", "original", "statuscode", "mimetype"],
    ["20150101000000", f"{VM_WIKI}/Powermatic66.ashx", "200", "text/html"],
    ["20150102000000", f"{VM_WIKI}/style.css", "200", "text/css"],
    ["20150103000000", f"{VM_WIKI}/Delta", "200", "warc/revisit"],
    ["20150104000000", f"{VM_WIKI}/logo.png", "200", "image/png"],
]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def stores():
    from wiki_mirror.ingestion.pipeline import Stores

    return Stores.in_memory()


@pytest.fixture
def no_wait_limiter():
    from wiki_mirror.ingestion.rate_limit import RateLimiter

    return RateLimiter(0)


@pytest.fixture
def mock_session():
    session = MagicMock()
    session.get.return_value = make_response(parse_payload())
    return session


@pytest.fixture
def mediawiki_client(mock_session, no_wait_limiter):
    from wiki_mirror.ingestion.mediawiki import MediaWikiClient

    return MediaWikiClient(
        "https://wiki.example/api.php",
        rate_limiter=no_wait_limiter,
        session=mock_session,
    )


@pytest.fixture
def dump_file(tmp_path):
    """Uncompressed dump; read back with ``cat`` as the decompressor."""
    path = tmp_path / "dump.xml"
    path.write_text(DUMP_XML, encoding="utf-8")
    return path


@pytest.fixture
def nlab_repo(tmp_path):
    """A checkout laid out like the nLab content repository (no .git)."""
    root = tmp_path / "nlab-content"
    pages = {
        ("pages", "1", "11"): ("category theory", NLAB_CONTENT),
        ("pages", "2", "22"): ("yoneda_lemma", NLAB_NO_HEADER),
        ("pages", "3", "33"): ("functor", "A functor maps $x$ to $F x$.\n"),
    }
    for parts, (slug, content) in pages.items():
        page_dir = root.joinpath(*parts)
        page_dir.mkdir(parents=True)
        (page_dir / "name").write_text(slug + "\n", encoding="utf-8")
        (page_dir / "content.md").write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def mirror_site(tmp_path):
    """A wget mirror directory for vintagemachinery.org."""
    site = tmp_path / "mirror" / "vintagemachinery.org"
    (site / "machines").mkdir(parents=True)
    (site / "images").mkdir()
    (site / "machines" / "unisaw.html").write_text(VM_PAGE_HTML, encoding="utf-8")
    (site / "index.html").write_text(
        "<html><body><p>Welcome</p></body></html>", encoding="utf-8"
    )
    (site / "images" / "gallery.html").write_text("<html></html>", encoding="utf-8")
    (site / "style.css").write_text("body {}", encoding="utf-8")
    return tmp_path / "mirror"
