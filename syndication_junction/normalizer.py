"""
Feed format normalizer.

Repairs common producer irregularities in raw feed text, then parses it as
RSS (schema A) or, failing that, Atom (schema B). Either way the result is
a CanonicalFeed.
"""
import re
import logging
from datetime import datetime, timezone
from email.utils import format_datetime
from html.entities import name2codepoint
from typing import Iterator, List, Optional, Sequence

from lxml import etree

from syndication_junction.models import Author, CanonicalFeed, Item, MediaAsset

logger = logging.getLogger(__name__)

# <media:content ...> -> <media-content ...>. The strict parser rejects
# prefixes that are never declared, which several producers emit.
NAMESPACED_TAG_PATTERN = re.compile(
    r"<(/?)([a-zA-Z_][a-zA-Z0-9_]*):([a-zA-Z_][a-zA-Z0-9_]*) *([^>]*)>"
)
BARE_AMPERSAND = "& "
ESCAPED_AMPERSAND = "&amp; "
FREE_TEXT_PATTERN = re.compile(r"<description>(.*?)</description>", re.DOTALL)
XML_DECLARATION_PATTERN = re.compile(r"^\s*<\?xml[^>]*\?>")
NAMED_ENTITY_PATTERN = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")
XML_ENTITIES = {"amp", "lt", "gt", "quot", "apos"}


class FormatError(Exception):
    """Raised when feed text matches none of the known schemas."""

    def __init__(self, message: str, errors: Optional[List[Exception]] = None):
        super().__init__(message)
        self.errors = errors or []


def _rewrite_namespaced_tag(match: re.Match) -> str:
    slash, prefix, local, rest = match.groups()
    if rest:
        return f"<{slash}{prefix}-{local} {rest}>"
    return f"<{slash}{prefix}-{local}>"


def _html_entity_to_reference(match: re.Match) -> str:
    """&nbsp; -> &#160;. XML only predefines five named entities."""
    name = match.group(1)
    if name in XML_ENTITIES:
        return match.group(0)
    codepoint = name2codepoint.get(name)
    if codepoint is None:
        # Unknown name: keep it as literal text
        return f"&amp;{name};"
    return f"&#{codepoint};"


def _wrap_free_text(match: re.Match) -> str:
    content = match.group(1)
    if content.lstrip().startswith("<![CDATA["):
        return match.group(0)
    if "<" not in content:
        # Entity-escaped markup must stay escaped; only HTML entity names need fixing
        content = NAMED_ENTITY_PATTERN.sub(_html_entity_to_reference, content)
        return f"<description>{content}</description>"
    content = content.replace("]]>", "]]]]><![CDATA[>")
    return f"<description><![CDATA[{content}]]></description>"


def repair(text: str) -> str:
    """
    Apply text-level repairs ahead of strict XML parsing.

    - prefix:local element names become prefix-local
    - bare "& " is escaped
    - raw markup inside <description> is wrapped in CDATA; otherwise HTML
      entity names there become numeric references

    Args:
        text: Raw feed text

    Returns:
        Repaired feed text
    """
    text = NAMESPACED_TAG_PATTERN.sub(_rewrite_namespaced_tag, text)
    text = text.replace(BARE_AMPERSAND, ESCAPED_AMPERSAND)
    text = FREE_TEXT_PATTERN.sub(_wrap_free_text, text)
    return text


def _parse_xml(text: str) -> etree._Element:
    """Strictly parse XML text; no recovery, entities or network access."""
    # lxml refuses str input that carries an encoding declaration
    text = XML_DECLARATION_PATTERN.sub("", text.lstrip("\ufeff"), count=1)
    parser = etree.XMLParser(recover=False, resolve_entities=False, no_network=True)
    return etree.fromstring(text, parser)


def _local(element: etree._Element) -> str:
    return etree.QName(element).localname


def _children(element: etree._Element, name: str) -> Iterator[etree._Element]:
    for child in element:
        # Skip comments and processing instructions
        if isinstance(child.tag, str) and _local(child) == name:
            yield child


def _child(element: etree._Element, name: str) -> Optional[etree._Element]:
    return next(_children(element, name), None)


def _inner(element: etree._Element) -> str:
    """Text of an element including any nested markup."""
    parts = [element.text or ""]
    for child in element:
        parts.append(etree.tostring(child, encoding="unicode", with_tail=True))
    return "".join(parts)


def _child_text(element: etree._Element, name: str) -> Optional[str]:
    child = _child(element, name)
    if child is None:
        return None
    return _inner(child)


def _parse_author(element: Optional[etree._Element]) -> Optional[Author]:
    """Parse <author> with name/uri children, or a plain-text author."""
    if element is None:
        return None
    name = _child_text(element, "name")
    if name is None:
        name = (element.text or "").strip()
    if not name:
        return None
    return Author(name=name.strip(), uri=(_child_text(element, "uri") or "").strip())


def _parse_media(element: etree._Element) -> List[MediaAsset]:
    media = []
    for content in _children(element, "media-content"):
        url = content.get("url")
        if not url:
            raise ValueError("media:content is missing required url attribute")
        media.append(MediaAsset(
            url=url,
            mime_type=content.get("type", ""),
            medium=content.get("medium", ""),
            description=_child_text(content, "media-description"),
            file_size=content.get("fileSize"),
        ))
    return media


def atom_date_to_rfc822(value: Optional[str]) -> Optional[str]:
    """
    Convert an Atom (ISO 8601) date to the RSS date format in UTC.

    Args:
        value: Date such as "2024-01-15T12:00:00.000Z"

    Returns:
        Date such as "Mon, 15 Jan 2024 12:00:00 +0000", or None
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable Atom date: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return format_datetime(parsed.astimezone(timezone.utc))


class FeedSchema:
    """A wire schema that can turn feed text into a CanonicalFeed."""

    name = "unknown"

    def parse(self, text: str) -> CanonicalFeed:
        """
        Parse repaired feed text.

        Raises:
            etree.XMLSyntaxError: If the text is not well-formed
            ValueError: If the document does not have this schema's shape
        """
        raise NotImplementedError


class RssSchema(FeedSchema):
    """Schema A: <rss><channel> with a flat list of <item>."""

    name = "rss"

    def parse(self, text: str) -> CanonicalFeed:
        root = _parse_xml(text)
        if _local(root) != "rss":
            raise ValueError(f"Expected <rss> root element, found <{_local(root)}>")

        channel = _child(root, "channel")
        if channel is None:
            raise ValueError("RSS document has no <channel>")

        return CanonicalFeed(
            title=(_child_text(channel, "title") or "").strip(),
            link=(_child_text(channel, "link") or "").strip(),
            items=[self._parse_item(el) for el in _children(channel, "item")],
        )

    def _parse_item(self, element: etree._Element) -> Item:
        guid = (_child_text(element, "guid") or "").strip()
        if not guid:
            raise ValueError("RSS item is missing required <guid>")

        author = _parse_author(_child(element, "author"))
        if author is None:
            creator = _child_text(element, "dc-creator")
            if creator and creator.strip():
                author = Author(name=creator.strip())

        return Item(
            guid=guid,
            title=_child_text(element, "title"),
            plain_title=_child_text(element, "plainTitle"),
            image_url=_child_text(element, "imageurl"),
            link=_child_text(element, "link"),
            body=_child_text(element, "description"),
            rich_body=_child_text(element, "content-encoded"),
            author=author,
            published_at=_child_text(element, "pubDate"),
            created_at=_child_text(element, "createDate"),
            updated_at=_child_text(element, "updateDate"),
            media=_parse_media(element),
        )


class AtomSchema(FeedSchema):
    """Schema B: <feed> with a list of <entry>."""

    name = "atom"

    def parse(self, text: str) -> CanonicalFeed:
        root = _parse_xml(text)
        if _local(root) != "feed":
            raise ValueError(f"Expected <feed> root element, found <{_local(root)}>")

        feed_author = _parse_author(_child(root, "author"))
        link = feed_author.uri if feed_author and feed_author.uri else self._link_href(root)

        return CanonicalFeed(
            title=(_child_text(root, "title") or "").strip(),
            link=link or "",
            items=[self._entry_to_item(el, feed_author) for el in _children(root, "entry")],
        )

    def _link_href(self, element: etree._Element) -> Optional[str]:
        """Prefer the alternate link; otherwise the first link with an href."""
        links = [link for link in _children(element, "link") if link.get("href")]
        for link in links:
            if link.get("rel", "alternate") == "alternate":
                return link.get("href")
        return links[0].get("href") if links else None

    def _entry_to_item(self, element: etree._Element, feed_author: Optional[Author]) -> Item:
        guid = (_child_text(element, "id") or "").strip()
        if not guid:
            raise ValueError("Atom entry is missing required <id>")

        title = _child_text(element, "title")
        timestamp = atom_date_to_rfc822(_child_text(element, "updated"))

        return Item(
            guid=guid,
            title=title,
            plain_title=title,
            link=self._link_href(element),
            body=_child_text(element, "summary"),
            rich_body=_child_text(element, "content"),
            author=_parse_author(_child(element, "author")) or feed_author,
            published_at=timestamp,
            created_at=timestamp,
            updated_at=timestamp,
            media=_parse_media(element),
        )


class FeedNormalizer:
    """
    Turns raw feed text into a CanonicalFeed.

    Schemas are tried in declared order; the first that parses wins. No
    content sniffing is done, and no third format is guessed.
    """

    DEFAULT_SCHEMAS = (RssSchema(), AtomSchema())

    def __init__(self, schemas: Optional[Sequence[FeedSchema]] = None):
        """
        Initialize normalizer.

        Args:
            schemas: Schemas to try, in order (default: RSS then Atom)
        """
        self.schemas = tuple(schemas) if schemas else self.DEFAULT_SCHEMAS

    def normalize(self, raw_text: str) -> CanonicalFeed:
        """
        Repair and parse raw feed text.

        Args:
            raw_text: Feed text as fetched (or as transformed)

        Returns:
            CanonicalFeed

        Raises:
            FormatError: If no schema matches; carries every schema's failure
        """
        text = repair(raw_text)
        errors = []

        for schema in self.schemas:
            try:
                feed = schema.parse(text)
            except (etree.XMLSyntaxError, ValueError) as e:
                logger.debug(f"Feed did not parse as {schema.name}: {e}")
                errors.append(e)
                continue

            logger.info(f"Parsed {len(feed.items)} items from '{feed.title}' as {schema.name}")
            return feed

        details = "; ".join(
            f"{schema.name}: {error}" for schema, error in zip(self.schemas, errors)
        )
        raise FormatError(f"No matching format found for the feed ({details})", errors=errors)
