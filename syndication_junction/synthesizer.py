"""
Output synthesizer.

Flattens every stored item into one timeline, fills in missing fields
according to the store's policy, and serializes the result as RSS.
"""
import re
import copy
import logging
from typing import List, Optional

from lxml import etree

from syndication_junction.models import Author, CanonicalFeed, FeedSourceState, Item, Store

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"<[^>]*>")
XML_PROLOG = '<?xml version="1.0" encoding="UTF-8"?>\n'

MEDIA_NS = "http://search.yahoo.com/mrss/"
CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"
WEBFEEDS_NS = "http://webfeeds.org/rss/1.0"
NSMAP = {"webfeeds": WEBFEEDS_NS, "media": MEDIA_NS, "content": CONTENT_NS}


def title_from_body(body: str, word_count: int, ellipsis: str) -> str:
    """
    Derive a title from an HTML description.

    Args:
        body: Description, possibly containing markup
        word_count: Maximum number of words to keep
        ellipsis: Appended when words were cut

    Returns:
        The first word_count words plus ellipsis, or the whole stripped text
    """
    text = TAG_PATTERN.sub("", body).replace("&#39;", "'")
    words = text.split()
    if len(words) > word_count:
        return " ".join(words[:word_count]).strip() + ellipsis
    return text


def media_html(item: Item, rich_body: str) -> List[str]:
    """HTML fragments for media the rich body does not already reference."""
    return [asset.html() for asset in item.media if asset.url not in rich_body]


def fill_item(item: Item, source: FeedSourceState, store: Store) -> Item:
    """
    Apply the store's output policy to one item.

    Args:
        item: A copy of a stored item; modified in place
        source: The item's owning source
        store: Store holding the policy flags

    Returns:
        The same item, for chaining
    """
    if item.author is None or store.override_item_author:
        item.author = Author(name=source.source_title, uri=source.source_link)

    if not item.title and store.include_description_as_title_if_none_given and item.body:
        item.title = title_from_body(
            item.body, store.description_title_word_count, store.title_ellipsis
        )

    if not item.rich_body and store.populate_content_encoded:
        item.rich_body = item.body

    if item.rich_body and store.add_media_to_content_encoded:
        fragments = media_html(item, item.rich_body)
        if fragments:
            item.rich_body = f"{item.rich_body}<br>{' '.join(fragments)}"

    return item


def sort_items(items: List[Item]) -> List[Item]:
    """
    Order items newest first.

    Items without a parseable publish date go last. The sort is stable,
    so ties keep their input order.
    """
    def key(item: Item):
        timestamp = item.published_timestamp()
        if timestamp is None:
            return (1, 0)
        return (0, -timestamp)

    return sorted(items, key=key)


def synthesize(store: Store) -> CanonicalFeed:
    """
    Build the merged output feed from every stored source.

    The store itself is not modified.

    Args:
        store: Loaded store

    Returns:
        CanonicalFeed titled with the store's output title and link
    """
    items = [
        fill_item(copy.deepcopy(item), source, store)
        for source, item in store.all_items()
    ]
    items = sort_items(items)

    if store.max_entries_published > 0:
        items = items[:store.max_entries_published]

    logger.info(f"Synthesized {len(items)} items from {len(store.sources)} sources")
    return CanonicalFeed(title=store.output_title, link=store.output_link, items=items)


def _add_text(parent: etree._Element, tag: str, text: Optional[str]):
    if text is None:
        return
    etree.SubElement(parent, tag).text = text


def _item_element(channel: etree._Element, item: Item) -> etree._Element:
    element = etree.SubElement(channel, "item")
    _add_text(element, "guid", item.guid)
    _add_text(element, "title", item.title)
    _add_text(element, "plainTitle", item.plain_title)
    _add_text(element, "imageurl", item.image_url)
    _add_text(element, "link", item.link)
    _add_text(element, "description", item.body)

    if item.author is not None:
        author = etree.SubElement(element, "author")
        _add_text(author, "name", item.author.name)
        _add_text(author, "uri", item.author.uri)

    _add_text(element, "pubDate", item.published_at)
    _add_text(element, "createDate", item.created_at)
    _add_text(element, "updateDate", item.updated_at)

    for asset in item.media:
        content = etree.SubElement(element, f"{{{MEDIA_NS}}}content")
        content.set("url", asset.url)
        content.set("type", asset.mime_type)
        if asset.file_size is not None:
            content.set("fileSize", asset.file_size)
        content.set("medium", asset.medium)
        _add_text(content, f"{{{MEDIA_NS}}}description", asset.description)

    # An empty rich body is omitted rather than emitted as an empty element
    if item.rich_body:
        _add_text(element, f"{{{CONTENT_NS}}}encoded", item.rich_body)

    return element


def serialize_feed(feed: CanonicalFeed) -> str:
    """
    Serialize a feed as an RSS 2.0 document.

    Args:
        feed: Feed to serialize

    Returns:
        XML text starting with an explicit UTF-8 prolog
    """
    rss = etree.Element("rss", version="2.0", nsmap=NSMAP)
    channel = etree.SubElement(rss, "channel")
    etree.SubElement(channel, "title").text = feed.title or ""
    etree.SubElement(channel, "link").text = feed.link or ""

    for item in feed.items:
        _item_element(channel, item)

    return XML_PROLOG + etree.tostring(rss, encoding="unicode", pretty_print=True)
