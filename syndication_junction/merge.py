"""
Merge engine.

Reconciles a freshly parsed feed against the stored state of its source,
using the item guid as the join key.
"""
import copy
import logging
from dataclasses import dataclass, replace
from typing import List, Tuple

from syndication_junction.models import CanonicalFeed, FeedSourceState, Item, Store

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Outcome of merging one feed into the store."""
    source_url: str
    created: bool  # True if the source was seen for the first time
    updated: int = 0  # Stored items overwritten by an incoming item
    added: int = 0  # Incoming items appended


def merge_item(old: Item, new: Item) -> Item:
    """
    Overwrite an item's content with a newer version of it.

    guid, link and author stay those of the stored item; everything else
    comes from the incoming one.

    Args:
        old: Stored item
        new: Incoming item with the same guid

    Returns:
        A new Item; neither argument is modified
    """
    return replace(
        old,
        title=new.title,
        plain_title=new.plain_title,
        image_url=new.image_url,
        body=new.body,
        rich_body=new.rich_body,
        media=copy.deepcopy(new.media),
        published_at=new.published_at,
        created_at=new.created_at,
        updated_at=new.updated_at,
    )


def merge_items(stored: List[Item], incoming: List[Item]) -> Tuple[List[Item], int, int]:
    """
    Merge incoming items into a stored item list.

    Stored items keep their positions; unmatched incoming items are
    appended in incoming order.

    Args:
        stored: Items currently stored for the source
        incoming: Items from the fresh feed

    Returns:
        Tuple of (merged list, updated count, added count)
    """
    merged = list(stored)
    updated = 0
    added = 0

    for new_item in incoming:
        matched = False
        for index, item in enumerate(merged):
            if item.guid == new_item.guid:
                merged[index] = merge_item(item, new_item)
                matched = True
        if matched:
            updated += 1
        else:
            merged.append(copy.deepcopy(new_item))
            added += 1

    return merged, updated, added


def ingest(store: Store, source_url: str, feed: CanonicalFeed) -> IngestResult:
    """
    Record a parsed feed in the store.

    A new source is stored as-is. A known source is reconciled by guid,
    and its title and link follow the feed's current values. Stored items
    are never removed, whatever the source's retain_all_entries flag says.

    Args:
        store: Store to update
        source_url: URL the feed was fetched from
        feed: Parsed feed

    Returns:
        IngestResult describing the change
    """
    existing = store.remove_source(source_url)

    if existing is None:
        state = FeedSourceState(
            items=copy.deepcopy(feed.items),
            source_title=feed.title,
            source_link=feed.link,
            transform_command="",
            retain_all_entries=True,
        )
        store.put_source(source_url, state)
        logger.info(f"New source {source_url}: stored {len(feed.items)} items")
        return IngestResult(source_url=source_url, created=True, added=len(feed.items))

    items, updated, added = merge_items(existing.items, feed.items)

    store.put_source(source_url, replace(
        existing,
        items=items,
        source_title=feed.title,
        source_link=feed.link,
    ))

    logger.info(f"Merged {source_url}: {updated} updated, {added} new")
    return IngestResult(
        source_url=source_url,
        created=False,
        updated=updated,
        added=added,
    )
