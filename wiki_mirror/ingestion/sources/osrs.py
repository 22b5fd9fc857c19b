"""Old School RuneScape wiki: MediaWiki API source.

Pages are fetched with ``action=parse``; the server's parsed HTML is the
canonical rendering and the wikitext is kept as raw content. Item and
monster infoboxes can additionally be extracted into typed records.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from urllib.parse import quote

from wiki_mirror.ingestion import infobox as infobox_parser
from wiki_mirror.ingestion.common import upstream_url
from wiki_mirror.ingestion.errors import NoInfoboxError, ParseError
from wiki_mirror.ingestion.mediawiki import MediaWikiClient, Page
from wiki_mirror.ingestion.pipeline import Rendition, SourceAdapter, SourcePipeline
from wiki_mirror.ingestion.results import SyncResult, aggregate_stats
from wiki_mirror.models import Source

logger = logging.getLogger(__name__)

LICENSE = "CC BY-NC-SA 3.0"
UPSTREAM_BASE = "https://oldschool.runescape.wiki/w/"

MAIN_CATEGORIES = ("Items", "Monsters", "NPCs", "Quests", "Locations")

EQUIPMENT_STATS = {
    "astab": "attack_stab",
    "aslash": "attack_slash",
    "acrush": "attack_crush",
    "amagic": "attack_magic",
    "arange": "attack_ranged",
    "dstab": "defence_stab",
    "dslash": "defence_slash",
    "dcrush": "defence_crush",
    "dmagic": "defence_magic",
    "drange": "defence_ranged",
    "str": "strength",
    "rstr": "ranged_strength",
    "mdmg": "magic_damage",
    "prayer": "prayer",
}

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """``Abyssal whip`` → ``abyssal-whip``; symbol-only titles are percent-encoded."""
    slug = _NON_SLUG.sub("-", title.lower()).strip("-")
    if slug:
        return slug
    return quote(title, safe="").lower().replace("%", "pct")


# ─── Infobox value coercion ─────────────────────────────────────────────────


def parse_int(value: str | None) -> int | None:
    if not value:
        return None
    match = re.search(r"-?\d[\d,]*", value)
    if not match:
        return None
    return int(match.group(0).replace(",", ""))


def parse_float(value: str | None) -> float | None:
    if not value:
        return None
    cleaned = re.sub(r"[^\d.-]", "", value)
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("yes", "true", "1")


def parse_date(value: str | None) -> date | None:
    """ISO dates or the wiki's ``5 March 2007`` style."""
    if not value:
        return None
    value = value.strip()
    for fmt in ("%Y-%m-%d", "%d %B %Y", "%B %d, %Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_locations(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in re.split(r"[,;]", value) if part.strip()]


@dataclass
class ItemRecord:
    name: str
    wiki_slug: str
    item_id: int | None = None
    members: bool = False
    tradeable: bool = False
    equipable: bool = False
    stackable: bool = False
    buy_limit: int | None = None
    high_alch: int | None = None
    low_alch: int | None = None
    value: int | None = None
    weight: float | None = None
    examine: str | None = None
    release_date: date | None = None
    equipment: dict[str, int | None] = field(default_factory=dict)

    @classmethod
    def from_infobox(cls, title: str, infobox: infobox_parser.Infobox) -> ItemRecord:
        get = infobox.get
        equipment = {}
        if parse_bool(get("equipable")):
            equipment = {
                name: parse_int(get(key)) for key, name in EQUIPMENT_STATS.items()
            }
        return cls(
            name=get("name") or title,
            wiki_slug=slugify(title),
            item_id=parse_int(get("id")),
            members=parse_bool(get("members")),
            tradeable=parse_bool(get("tradeable")),
            equipable=parse_bool(get("equipable")),
            stackable=parse_bool(get("stackable")),
            buy_limit=parse_int(get("buy_limit")),
            high_alch=parse_int(get("highalch")),
            low_alch=parse_int(get("lowalch")),
            value=parse_int(get("value")),
            weight=parse_float(get("weight")),
            examine=get("examine"),
            release_date=parse_date(get("release")),
            equipment=equipment,
        )


@dataclass
class MonsterRecord:
    name: str
    wiki_slug: str
    monster_id: int | None = None
    combat_level: int | None = None
    hitpoints: int | None = None
    max_hit: int | None = None
    attack_style: str | None = None
    slayer_level: int | None = None
    slayer_xp: float | None = None
    locations: list[str] = field(default_factory=list)
    examine: str | None = None

    @classmethod
    def from_infobox(
        cls, title: str, infobox: infobox_parser.Infobox
    ) -> MonsterRecord:
        get = infobox.get
        return cls(
            name=get("name") or title,
            wiki_slug=slugify(title),
            monster_id=parse_int(get("id")),
            combat_level=parse_int(get("combat")),
            hitpoints=parse_int(get("hitpoints")),
            max_hit=parse_int(get("max_hit")),
            attack_style=get("attack_style"),
            slayer_level=parse_int(get("slayer_level")),
            slayer_xp=parse_float(get("slayer_xp")),
            locations=parse_locations(get("location")),
            examine=get("examine"),
        )


# ─── Pipeline ───────────────────────────────────────────────────────────────


class OSRSAdapter(SourceAdapter[str, Page]):
    source = Source.OSRS
    license = LICENSE
    upstream_base = UPSTREAM_BASE

    def __init__(self, client: MediaWikiClient) -> None:
        self.client = client

    def fetch(self, key: str) -> Page:
        return self.client.get_page(key)

    def render(self, page: Page) -> Rendition:
        metadata: dict = {"pageid": page.page_id, "revid": page.revision_id}
        try:
            metadata["infobox_type"] = infobox_parser.parse(page.wikitext).infobox_type
        except NoInfoboxError:
            pass
        return Rendition(
            slug=slugify(page.title),
            title=page.title,
            html=page.html,
            raw=page.wikitext or "",
            metadata=metadata,
        )

    def upstream_url(self, page: Page, rendition: Rendition) -> str:
        return upstream_url(self.upstream_base, page.title.replace(" ", "_"))


class OSRSPipeline(SourcePipeline[str, Page]):
    """MediaWiki-backed pipeline. Sequential: the API is rate limited."""

    lookback = timedelta(days=1)
    recent_changes_limit = 500

    adapter: OSRSAdapter

    @property
    def client(self) -> MediaWikiClient:
        return self.adapter.client

    def changed_keys(self, since: datetime) -> list[str]:
        changes = self.client.recent_changes(since, limit=self.recent_changes_limit)
        return list(dict.fromkeys(change.title for change in changes))

    def all_keys(self, limit: int | None = None) -> list[str]:
        return list(self.client.all_pages(limit=limit))

    def sync_category(self, category: str, limit: int = 5000) -> SyncResult:
        """Process every main-namespace member of a category."""
        category = category.removeprefix("Category:")

        def run(_run) -> SyncResult:
            titles = self.client.category_members(category, limit=limit)
            return SyncResult.success(aggregate_stats(self.process_pages(titles)))

        return self.run_tracked(f"category:{category}", run)

    def sync_main_categories(self, limit: int = 10_000) -> dict[str, SyncResult]:
        return {name: self.sync_category(name, limit=limit) for name in MAIN_CATEGORIES}

    def _fetch_infobox(
        self, title: str, expected: str
    ) -> tuple[Page, infobox_parser.Infobox]:
        page = self.client.get_page(title)
        box = infobox_parser.parse(page.wikitext)
        if box.infobox_type.lower() != expected.lower():
            raise ParseError(
                f"{title!r} is not {expected.lower()} ({box.infobox_type})"
            )
        return page, box

    def process_item_page(self, title: str) -> ItemRecord:
        """Extract and store an ``{{Infobox Item}}`` as an :class:`ItemRecord`.

        Raises:
            NoInfoboxError: page has no infobox
            ParseError: infobox is not an item
        """
        page, box = self._fetch_infobox(title, "Item")
        record = ItemRecord.from_infobox(page.title, box)
        self.stores.records.upsert_record("item", record.wiki_slug, asdict(record))
        return record

    def process_monster_page(self, title: str) -> MonsterRecord:
        page, box = self._fetch_infobox(title, "Monster")
        record = MonsterRecord.from_infobox(page.title, box)
        self.stores.records.upsert_record("monster", record.wiki_slug, asdict(record))
        return record
