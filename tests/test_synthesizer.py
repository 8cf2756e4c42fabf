"""
Tests for the output synthesizer.
"""
import copy
import pytest
from lxml import etree

from syndication_junction.models import Author, CanonicalFeed, FeedSourceState, Item, MediaAsset, Store
from syndication_junction.normalizer import FeedNormalizer
from syndication_junction.synthesizer import (
    XML_PROLOG,
    fill_item,
    serialize_feed,
    sort_items,
    synthesize,
    title_from_body,
)

SOURCE = FeedSourceState(source_title="Alice", source_link="https://mastodon.example/@alice")


def store_with(*items, **policy):
    store = Store(output_title="Merged", output_link="https://example.com", **policy)
    store.put_source("https://mastodon.example/@alice.rss", FeedSourceState(
        items=list(items),
        source_title=SOURCE.source_title,
        source_link=SOURCE.source_link,
    ))
    return store


class TestTitleFromBody:
    """Tests for title_from_body."""

    def test_truncates_to_word_count(self):
        """Test that tags are stripped and the ellipsis added."""
        body = "<p>Hello world, this is a test post about things</p>"
        assert title_from_body(body, 3, "...") == "Hello world, this..."

    def test_short_body_kept_whole(self):
        assert title_from_body("<p>Just this</p>", 10, "...") == "Just this"

    def test_custom_ellipsis(self):
        assert title_from_body("one two three", 2, " [more]") == "one two [more]"

    def test_apostrophe_entity(self):
        assert title_from_body("It&#39;s here", 10, "...") == "It's here"


class TestFillItem:
    """Tests for fill_item."""

    def test_missing_author_from_source(self):
        item = fill_item(Item(guid="1"), SOURCE, Store())
        assert item.author == Author(name="Alice", uri="https://mastodon.example/@alice")

    def test_existing_author_kept(self):
        item = fill_item(Item(guid="1", author=Author(name="Bob")), SOURCE, Store())
        assert item.author == Author(name="Bob")

    def test_override_item_author(self):
        item = fill_item(Item(guid="1", author=Author(name="Bob")), SOURCE, Store(override_item_author=True))
        assert item.author.name == "Alice"

    def test_title_from_body_when_missing(self):
        item = fill_item(
            Item(guid="1", body="<p>Hello world, this is a test post about things</p>"),
            SOURCE,
            Store(description_title_word_count=3),
        )
        assert item.title == "Hello world, this..."

    def test_title_not_synthesized_when_disabled(self):
        item = fill_item(
            Item(guid="1", body="Some body"),
            SOURCE,
            Store(include_description_as_title_if_none_given=False),
        )
        assert item.title is None

    def test_existing_title_kept(self):
        item = fill_item(Item(guid="1", title="Real", body="Body"), SOURCE, Store())
        assert item.title == "Real"

    def test_rich_body_from_body(self):
        item = fill_item(Item(guid="1", body="<p>Body</p>"), SOURCE, Store())
        assert item.rich_body == "<p>Body</p>"

    def test_rich_body_not_populated_when_disabled(self):
        item = fill_item(
            Item(guid="1", body="<p>Body</p>"),
            SOURCE,
            Store(populate_content_encoded=False),
        )
        assert item.rich_body is None

    def test_media_appended_to_rich_body(self):
        item = fill_item(
            Item(
                guid="1",
                body="<p>Look</p>",
                media=[MediaAsset(url="https://files.example/a.png", mime_type="image/png", description="A cat")],
            ),
            SOURCE,
            Store(),
        )
        assert item.rich_body == '<p>Look</p><br><img src="https://files.example/a.png" alt="A cat" />'

    def test_media_already_referenced_not_repeated(self):
        rich = '<p><img src="https://files.example/a.png"></p>'
        item = fill_item(
            Item(
                guid="1",
                rich_body=rich,
                media=[MediaAsset(url="https://files.example/a.png", mime_type="image/png")],
            ),
            SOURCE,
            Store(),
        )
        assert item.rich_body == rich

    def test_media_not_added_when_disabled(self):
        item = fill_item(
            Item(
                guid="1",
                body="<p>Look</p>",
                media=[MediaAsset(url="https://files.example/a.png", mime_type="image/png")],
            ),
            SOURCE,
            Store(add_media_to_content_encoded=False),
        )
        assert item.rich_body == "<p>Look</p>"


class TestSortItems:
    """Tests for sort_items."""

    def test_newest_first(self):
        items = [
            Item(guid="old", published_at="Mon, 01 Jan 2024 00:00:00 +0000"),
            Item(guid="new", published_at="Tue, 02 Jan 2024 00:00:00 +0000"),
        ]
        assert [i.guid for i in sort_items(items)] == ["new", "old"]

    def test_stable_with_missing_last(self):
        """Test that ties keep input order and missing dates go last."""
        items = [
            Item(guid="first", published_at="Thu, 01 Jan 1970 00:01:40 +0000"),
            Item(guid="missing"),
            Item(guid="second", published_at="Thu, 01 Jan 1970 00:01:40 +0000"),
        ]
        assert [i.guid for i in sort_items(items)] == ["first", "second", "missing"]

    def test_unparseable_counts_as_missing(self):
        items = [
            Item(guid="bad", published_at="whenever"),
            Item(guid="good", published_at="Mon, 01 Jan 2024 00:00:00 +0000"),
        ]
        assert [i.guid for i in sort_items(items)] == ["good", "bad"]


class TestSynthesize:
    """Tests for synthesize."""

    @pytest.fixture
    def five_items(self):
        return [
            Item(guid=str(day), published_at=f"Mon, 0{day} Jan 2024 00:00:00 +0000")
            for day in range(1, 6)
        ]

    def test_truncation(self, five_items):
        feed = synthesize(store_with(*five_items, max_entries_published=2))
        assert [i.guid for i in feed.items] == ["5", "4"]

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_is_unbounded(self, five_items, limit):
        feed = synthesize(store_with(*five_items, max_entries_published=limit))
        assert len(feed.items) == 5

    def test_output_title_and_link(self):
        feed = synthesize(store_with())
        assert feed.title == "Merged"
        assert feed.link == "https://example.com"
        assert feed.items == []

    def test_items_from_every_source(self):
        store = store_with(Item(guid="1"))
        store.put_source("https://other.example/feed", FeedSourceState(
            items=[Item(guid="1")], source_title="Other"
        ))

        feed = synthesize(store)

        assert sorted(i.author.name for i in feed.items) == ["Alice", "Other"]

    def test_store_not_modified(self):
        store = store_with(Item(
            guid="1",
            body="<p>Body</p>",
            media=[MediaAsset(url="https://files.example/a.png", mime_type="image/png")],
        ))
        before = copy.deepcopy(store)

        synthesize(store)

        assert store == before


class TestSerializeFeed:
    """Tests for serialize_feed."""

    def test_prolog(self):
        xml = serialize_feed(CanonicalFeed(title="Merged", link="https://example.com"))
        assert xml.startswith(XML_PROLOG)

    def test_empty_feed_parses_back(self):
        xml = serialize_feed(synthesize(Store()))
        feed = FeedNormalizer().normalize(xml)
        assert feed.items == []

    def test_empty_rich_body_omitted(self):
        xml = serialize_feed(CanonicalFeed(title="T", link="L", items=[Item(guid="1", rich_body="")]))
        assert "content:encoded" not in xml

    def test_missing_fields_omitted(self):
        xml = serialize_feed(CanonicalFeed(title="T", link="L", items=[Item(guid="1")]))
        root = etree.fromstring(xml.encode("utf-8"))
        item = root.find("channel/item")
        assert [child.tag for child in item] == ["guid"]

    def test_media_content(self):
        feed = CanonicalFeed(title="T", link="L", items=[Item(
            guid="1",
            media=[MediaAsset(
                url="https://files.example/a.png",
                mime_type="image/png",
                medium="image",
                file_size="1234",
                description="A cat",
            )],
        )])

        root = etree.fromstring(serialize_feed(feed).encode("utf-8"))
        content = root.find("channel/item/{http://search.yahoo.com/mrss/}content")

        assert content.get("url") == "https://files.example/a.png"
        assert content.get("type") == "image/png"
        assert content.get("fileSize") == "1234"
        assert content.get("medium") == "image"
        assert content.findtext("{http://search.yahoo.com/mrss/}description") == "A cat"

    def test_markup_is_escaped(self):
        feed = CanonicalFeed(title="T", link="L", items=[Item(guid="1", body="<p>Hi & bye</p>")])
        xml = serialize_feed(feed)
        assert "<description>&lt;p&gt;Hi &amp; bye&lt;/p&gt;</description>" in xml
