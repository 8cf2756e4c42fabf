"""
Tests for the merge engine.
"""
import copy
import pytest

from syndication_junction.merge import ingest, merge_item, merge_items
from syndication_junction.models import (
    Author,
    CanonicalFeed,
    FeedSourceState,
    Item,
    MediaAsset,
    Store,
)

SOURCE_URL = "https://mastodon.example/@alice.rss"


def make_feed(*items, title="Alice", link="https://mastodon.example/@alice"):
    return CanonicalFeed(title=title, link=link, items=list(items))


class TestMergeItem:
    """Tests for merge_item."""

    def test_content_comes_from_incoming(self):
        old = Item(guid="1", title="Old", body="old body", published_at="Mon, 01 Jan 2024 00:00:00 +0000")
        new = Item(guid="1", title="New", body="new body", published_at="Tue, 02 Jan 2024 00:00:00 +0000")

        merged = merge_item(old, new)

        assert merged.title == "New"
        assert merged.body == "new body"
        assert merged.published_at == "Tue, 02 Jan 2024 00:00:00 +0000"

    def test_link_and_author_kept_from_stored(self):
        old = Item(guid="1", link="https://a.example/1", author=Author(name="Alice"))
        new = Item(guid="1", link="https://a.example/moved", author=Author(name="Mallory"))

        merged = merge_item(old, new)

        assert merged.link == "https://a.example/1"
        assert merged.author == Author(name="Alice")

    def test_inputs_not_modified(self):
        old = Item(guid="1", title="Old")
        new = Item(guid="1", title="New", media=[MediaAsset(url="https://a.example/x.png")])
        old_copy = copy.deepcopy(old)

        merged = merge_item(old, new)
        merged.media[0].url = "https://changed.example/x.png"

        assert old == old_copy
        assert new.media[0].url == "https://a.example/x.png"


class TestMergeItems:
    """Tests for merge_items."""

    def test_matching_guid_keeps_position(self):
        stored = [Item(guid="1", title="One"), Item(guid="2", title="Two")]
        incoming = [Item(guid="2", title="Two v2")]

        merged, updated, added = merge_items(stored, incoming)

        assert [(i.guid, i.title) for i in merged] == [("1", "One"), ("2", "Two v2")]
        assert (updated, added) == (1, 0)

    def test_new_items_appended_in_incoming_order(self):
        stored = [Item(guid="1")]
        incoming = [Item(guid="3"), Item(guid="1"), Item(guid="2")]

        merged, updated, added = merge_items(stored, incoming)

        assert [i.guid for i in merged] == ["1", "3", "2"]
        assert (updated, added) == (1, 2)

    def test_empty_incoming(self):
        stored = [Item(guid="1")]
        merged, updated, added = merge_items(stored, [])
        assert merged == stored
        assert (updated, added) == (0, 0)


class TestIngest:
    """Tests for ingest."""

    def test_new_source_stored_as_is(self):
        store = Store()
        feed = make_feed(Item(guid="1"), Item(guid="2"))

        result = ingest(store, SOURCE_URL, feed)

        state = store.get_source(SOURCE_URL)
        assert result.created is True
        assert result.added == 2
        assert [i.guid for i in state.items] == ["1", "2"]
        assert state.source_title == "Alice"
        assert state.source_link == "https://mastodon.example/@alice"
        assert state.transform_command == ""
        assert state.retain_all_entries is True

    def test_stored_items_do_not_alias_feed(self):
        store = Store()
        feed = make_feed(Item(guid="1", title="Original"))
        ingest(store, SOURCE_URL, feed)

        feed.items[0].title = "Changed"

        assert store.get_source(SOURCE_URL).items[0].title == "Original"

    def test_ingest_is_idempotent(self):
        """Test that ingesting the same feed twice changes nothing."""
        store = Store()
        feed = make_feed(Item(guid="1", title="One"), Item(guid="2", title="Two"))

        ingest(store, SOURCE_URL, feed)
        first = copy.deepcopy(store)
        result = ingest(store, SOURCE_URL, feed)

        assert store == first
        assert result.created is False
        assert (result.updated, result.added) == (2, 0)

    def test_items_no_longer_in_feed_are_retained(self):
        store = Store()
        ingest(store, SOURCE_URL, make_feed(Item(guid="1"), Item(guid="2")))
        ingest(store, SOURCE_URL, make_feed(Item(guid="2"), Item(guid="3")))

        assert [i.guid for i in store.get_source(SOURCE_URL).items] == ["1", "2", "3"]

    def test_title_and_link_follow_feed(self):
        store = Store()
        ingest(store, SOURCE_URL, make_feed(Item(guid="1")))
        ingest(store, SOURCE_URL, make_feed(Item(guid="1"), title="Alice (new)", link="https://new.example"))

        state = store.get_source(SOURCE_URL)
        assert state.source_title == "Alice (new)"
        assert state.source_link == "https://new.example"

    def test_source_options_preserved(self):
        store = Store()
        store.put_source(SOURCE_URL, FeedSourceState(
            items=[Item(guid="1")],
            transform_command="sed s/a/b/",
        ))

        ingest(store, SOURCE_URL, make_feed(Item(guid="2")))

        assert store.get_source(SOURCE_URL).transform_command == "sed s/a/b/"

    def test_retain_all_entries_disabled_still_retains(self):
        """Test that the flag is carried through but never deletes items."""
        store = Store()
        store.put_source(SOURCE_URL, FeedSourceState(
            items=[Item(guid="1"), Item(guid="2", title="Two")],
            retain_all_entries=False,
        ))

        result = ingest(store, SOURCE_URL, make_feed(Item(guid="2", title="Two v2"), Item(guid="3")))

        state = store.get_source(SOURCE_URL)
        assert [(i.guid, i.title) for i in state.items] == [("1", None), ("2", "Two v2"), ("3", None)]
        assert (result.updated, result.added) == (1, 1)
        assert state.retain_all_entries is False

    def test_other_sources_untouched(self):
        store = Store()
        other = FeedSourceState(items=[Item(guid="1")], source_title="Other")
        store.put_source("https://other.example/feed", other)

        ingest(store, SOURCE_URL, make_feed(Item(guid="1")))

        assert store.get_source("https://other.example/feed") is other
        assert len(store.sources) == 2

    @pytest.mark.parametrize("guids", [[], ["1"], ["1", "2", "3"]])
    def test_every_incoming_guid_is_stored(self, guids):
        store = Store()
        ingest(store, SOURCE_URL, make_feed(Item(guid="0")))
        ingest(store, SOURCE_URL, make_feed(*[Item(guid=g) for g in guids]))

        stored = {i.guid for i in store.get_source(SOURCE_URL).items}
        assert set(guids) <= stored
        assert "0" in stored
