"""
Data models for Syndication Junction.

Items, sources and the store document that persists them between runs.
"""
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from enum import Enum
from html import escape
from typing import Any, Dict, List, Optional, Tuple


class LogLevel(Enum):
    """Valid log levels for runtime configuration."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TransformFailurePolicy(Enum):
    """What to do with a source whose transform command failed."""
    SKIP = "skip"  # Leave the source untouched for this run
    USE_ORIGINAL = "use_original"  # Normalize the untransformed text instead


def parse_feed_timestamp(value: Optional[str]) -> Optional[int]:
    """
    Parse an RFC 822 feed date into epoch seconds.

    Args:
        value: Date text such as "Fri, 24 Oct 2025 12:00:00 +0000"

    Returns:
        Epoch seconds, or None if missing or unparseable
    """
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value.replace("GMT", "+0000"))
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None or parsed.tzinfo is None:
        # Dates without a zone are ambiguous
        return None
    return int(parsed.timestamp())


@dataclass
class MediaAsset:
    """A media reference attached to an item (media:content)."""

    url: str
    mime_type: str = ""
    medium: str = ""
    description: Optional[str] = None
    file_size: Optional[str] = None

    def __post_init__(self):
        if not self.url:
            raise ValueError("MediaAsset.url cannot be empty")

    def html(self) -> str:
        """Render the asset as an HTML fragment."""
        description = self.description or ""
        if self.mime_type.startswith("image"):
            return f'<img src="{escape(self.url)}" alt="{escape(description)}" />'
        if self.mime_type.startswith("video"):
            return (
                f'<video src="{escape(self.url)}" type="{escape(self.mime_type)}" controls>'
                f"{description}</video>"
            )
        return description

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "description": self.description,
            "mimeType": self.mime_type,
            "fileSize": self.file_size,
            "medium": self.medium,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaAsset":
        return cls(
            url=data["url"],
            mime_type=data.get("mimeType") or "",
            medium=data.get("medium") or "",
            description=data.get("description"),
            file_size=data.get("fileSize"),
        )


@dataclass
class Author:
    """Item or feed author."""

    name: str
    uri: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "uri": self.uri}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Author":
        return cls(name=data.get("name") or "", uri=data.get("uri") or "")


@dataclass
class Item:
    """
    Canonical unit of content.

    Produced by the normalizer from either feed schema. The guid identifies
    the item within its source feed only.
    """

    guid: str
    title: Optional[str] = None
    plain_title: Optional[str] = None
    image_url: Optional[str] = None
    link: Optional[str] = None
    body: Optional[str] = None  # Short description
    rich_body: Optional[str] = None  # Full HTML (content:encoded)
    author: Optional[Author] = None
    published_at: Optional[str] = None  # RFC 822 date text
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    media: List[MediaAsset] = field(default_factory=list)

    def __post_init__(self):
        """Validate required fields."""
        if not self.guid:
            raise ValueError("Item.guid cannot be empty")

    def published_timestamp(self) -> Optional[int]:
        return parse_feed_timestamp(self.published_at)

    def created_timestamp(self) -> Optional[int]:
        return parse_feed_timestamp(self.created_at)

    def updated_timestamp(self) -> Optional[int]:
        return parse_feed_timestamp(self.updated_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guid": self.guid,
            "title": self.title,
            "plainTitle": self.plain_title,
            "imageUrl": self.image_url,
            "link": self.link,
            "body": self.body,
            "richBody": self.rich_body,
            "author": self.author.to_dict() if self.author else None,
            "publishedAt": self.published_at,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "media": [asset.to_dict() for asset in self.media],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        author = data.get("author")
        return cls(
            guid=data["guid"],
            title=data.get("title"),
            plain_title=data.get("plainTitle"),
            image_url=data.get("imageUrl"),
            link=data.get("link"),
            body=data.get("body"),
            rich_body=data.get("richBody"),
            author=Author.from_dict(author) if author else None,
            published_at=data.get("publishedAt"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            media=[MediaAsset.from_dict(m) for m in data.get("media") or []],
        )


@dataclass
class CanonicalFeed:
    """A feed after normalization, independent of its wire schema."""

    title: str
    link: str
    items: List[Item] = field(default_factory=list)


@dataclass
class FeedSourceState:
    """Last known state of one ingested source, plus its per-source options."""

    items: List[Item] = field(default_factory=list)
    source_title: str = ""
    source_link: str = ""
    transform_command: Optional[str] = ""  # Command to pipe raw feed text through
    retain_all_entries: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "sourceTitle": self.source_title,
            "sourceLink": self.source_link,
            "transformCommand": self.transform_command,
            "retainAllEntries": self.retain_all_entries,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedSourceState":
        return cls(
            items=[Item.from_dict(i) for i in data.get("items") or []],
            source_title=data.get("sourceTitle") or "",
            source_link=data.get("sourceLink") or "",
            transform_command=data.get("transformCommand", ""),
            retain_all_entries=data.get("retainAllEntries", True),
        )


@dataclass
class Store:
    """
    The persisted document: every source's state plus output policy.

    Loaded once per run, passed explicitly through ingest and publish,
    and saved as a whole.
    """

    sources: Dict[str, FeedSourceState] = field(default_factory=dict)
    output_title: str = ""
    output_link: str = ""
    # Useful for sources such as Mastodon which do not populate titles
    include_description_as_title_if_none_given: bool = True
    description_title_word_count: int = 10
    title_ellipsis: str = "..."
    populate_content_encoded: bool = True
    add_media_to_content_encoded: bool = True
    max_entries_published: int = -1  # Zero or negative means unbounded
    override_item_author: bool = False

    def get_source(self, source_url: str) -> Optional[FeedSourceState]:
        return self.sources.get(source_url)

    def put_source(self, source_url: str, state: FeedSourceState):
        self.sources[source_url] = state

    def remove_source(self, source_url: str) -> Optional[FeedSourceState]:
        return self.sources.pop(source_url, None)

    def all_items(self) -> List[Tuple[FeedSourceState, Item]]:
        """Every stored item paired with its owning source."""
        return [
            (state, item)
            for state in self.sources.values()
            for item in state.items
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": {url: state.to_dict() for url, state in self.sources.items()},
            "outputTitle": self.output_title,
            "outputLink": self.output_link,
            "includeDescriptionAsTitleIfNoneGiven": self.include_description_as_title_if_none_given,
            "descriptionTitleWordCount": self.description_title_word_count,
            "titleEllipsis": self.title_ellipsis,
            "populateContentEncoded": self.populate_content_encoded,
            "addMediaToContentEncoded": self.add_media_to_content_encoded,
            "maxEntriesPublished": self.max_entries_published,
            "overrideItemAuthor": self.override_item_author,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Store":
        """
        Build a Store from a decoded document.

        Missing policy keys fall back to their defaults so older documents
        still load.

        Raises:
            ValueError, KeyError, TypeError: If the document is malformed
        """
        if not isinstance(data, dict):
            raise TypeError(f"Store document must be an object, got {type(data).__name__}")

        defaults = cls()
        sources = {
            url: FeedSourceState.from_dict(state)
            for url, state in (data.get("sources") or {}).items()
        }
        return cls(
            sources=sources,
            output_title=data.get("outputTitle", defaults.output_title),
            output_link=data.get("outputLink", defaults.output_link),
            include_description_as_title_if_none_given=data.get(
                "includeDescriptionAsTitleIfNoneGiven",
                defaults.include_description_as_title_if_none_given,
            ),
            description_title_word_count=int(
                data.get("descriptionTitleWordCount", defaults.description_title_word_count)
            ),
            title_ellipsis=data.get("titleEllipsis", defaults.title_ellipsis),
            populate_content_encoded=data.get(
                "populateContentEncoded", defaults.populate_content_encoded
            ),
            add_media_to_content_encoded=data.get(
                "addMediaToContentEncoded", defaults.add_media_to_content_encoded
            ),
            max_entries_published=int(
                data.get("maxEntriesPublished", defaults.max_entries_published)
            ),
            override_item_author=data.get("overrideItemAuthor", defaults.override_item_author),
        )


@dataclass(frozen=True)
class AggregatorConfig:
    """
    Runtime configuration.

    Loaded from config.yaml. Immutable (frozen) after loading.
    Output policy is not here: it lives in the Store document.
    """

    state_file: str = "db.json"
    media_dir: str = "output/media"
    timeout: int = 30
    max_retries: int = 3
    max_workers: int = 4
    media_max_workers: int = 4
    user_agent: Optional[str] = None
    log_level: LogLevel = LogLevel.INFO
    transform_failure_policy: TransformFailurePolicy = TransformFailurePolicy.SKIP
    transform_timeout: int = 60
    sources: Tuple[str, ...] = ()  # Default sources for `ingest` without URLs

    def __post_init__(self):
        """Validate configuration."""
        if not self.state_file:
            raise ValueError("AggregatorConfig.state_file cannot be empty")
        for name in ("timeout", "max_retries", "max_workers", "media_max_workers", "transform_timeout"):
            value = getattr(self, name)
            if type(value) is not int or value < 1:
                raise ValueError(
                    f"AggregatorConfig.{name} must be a positive integer, got: {value}"
                )
