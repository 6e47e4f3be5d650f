import json
from datetime import timedelta

import pytest

from reader_cache.cache.eviction import EvictionCandidate, select_victims
from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.cache.metadata import CacheEntry, CacheMetadata, text_direction, ttl_to_millis
from reader_cache.common.exceptions import SerializationError


class TestCacheMetadata:

    def test_expiry_boundary(self):
        metadata = CacheMetadata("book_1", "books", created_at_millis=1_000, ttl_millis=500)

        assert not metadata.is_expired(1_500)
        assert metadata.is_expired(1_501)
        assert metadata.remaining_ttl_millis(1_200) == 300

    def test_no_ttl_never_expires(self):
        metadata = CacheMetadata("pref", "preferences", created_at_millis=0, ttl_millis=None)

        assert not metadata.is_expired(10 ** 15)
        assert metadata.expires_at_millis is None
        assert metadata.remaining_ttl_millis(5) is None

    def test_direction_from_language(self):
        assert CacheMetadata("k", "ns", language="ur").direction == "rtl"
        assert CacheMetadata("k", "ns", language="en-US").direction == "ltr"
        assert CacheMetadata("k", "ns").direction is None
        assert text_direction("AR") == "rtl"

    def test_record_access(self):
        metadata = CacheMetadata("k", "ns", created_at_millis=100)

        touched = metadata.record_access(250)

        assert touched.access_count == 1
        assert touched.last_access_millis == 250
        assert metadata.access_count == 0

    def test_json_uses_camel_case(self):
        metadata = CacheMetadata("book_1", "books", created_at_millis=5, is_pinned=True)

        data = json.loads(metadata.to_json())

        assert data["originalKey"] == "book_1"
        assert data["createdAtMillis"] == 5
        assert data["isPinned"] is True
        assert CacheMetadata.from_json(metadata.to_json()) == metadata

    def test_storage_key(self):
        assert CacheMetadata("book_1", "books").storage_key == "books:book_1"

    @pytest.mark.parametrize("payload", [
        "not json",
        "[1, 2]",
        json.dumps({"namespace": "books"}),
        json.dumps({"originalKey": "k", "namespace": "ns", "createdAtMillis": "soon"}),
    ])
    def test_malformed_records_raise(self, payload):
        with pytest.raises(SerializationError):
            CacheMetadata.from_json(payload)

    def test_ttl_to_millis(self):
        assert ttl_to_millis(timedelta(seconds=2)) == 2000
        assert ttl_to_millis(None) is None

    def test_cache_entry_validity(self):
        expired = CacheMetadata("k", "ns", created_at_millis=0, ttl_millis=1)

        assert not CacheEntry("value", expired).is_valid
        assert CacheEntry("value").is_valid
        assert not CacheEntry(None).is_valid


class TestKeyBuilder:

    def test_image_key_drops_query_and_fragment(self):
        assert KeyBuilder.image_key("https://cdn.example.com/a/b.png?v=1") == \
            KeyBuilder.image_key("https://cdn.example.com/a/b.png?v=2#top")
        assert KeyBuilder.image_key("https://cdn.example.com/a/b.png?v=1") == \
            "https://cdn.example.com/a/b.png"

    def test_image_key_keeps_port_and_drops_credentials(self):
        assert KeyBuilder.image_key("http://user:pw@host:8080/x.jpg?t=1") == "http://host:8080/x.jpg"

    def test_image_key_for_relative_path(self):
        assert KeyBuilder.image_key("/static/cover.jpg?size=large") == "/static/cover.jpg"

    def test_resource_key_with_params(self):
        plain = KeyBuilder.resource_key("Book", 42)
        with_params = KeyBuilder.resource_key("book", 42, {"lang": "ur", "page": 1})

        assert plain == "book_42"
        assert with_params.startswith("book_42_")
        assert with_params == KeyBuilder.resource_key("book", 42, {"page": 1, "lang": "ur"})

    def test_extract_id(self):
        assert KeyBuilder.extract_id("book_42") == "42"
        assert KeyBuilder.extract_id("chapter_9") == "9"
        assert KeyBuilder.extract_id("image_cover") == "cover"
        assert KeyBuilder.extract_id("homepage") == "homepage"

    def test_metadata_key_split(self):
        key = KeyBuilder.metadata_key("books", "thumbnail:abc")

        assert KeyBuilder.split_metadata_key(key) == ("books", "thumbnail:abc")

    def test_build_hashes_containers(self):
        key = KeyBuilder.build("module", "func", {"b": 1, "a": 2}, None, version="2")

        assert key.startswith("module:func:")
        assert key.endswith(":null:v2")
        assert key == KeyBuilder.build("module", "func", {"a": 2, "b": 1}, None, version="2")


class TestSelectVictims:

    def test_nothing_selected_within_budget(self):
        candidates = [EvictionCandidate("a", 10, last_access=1)]

        assert select_victims(candidates, 10, 10) == []

    def test_oldest_first_within_rank(self):
        candidates = [
            EvictionCandidate("new", 10, last_access=3),
            EvictionCandidate("old", 10, last_access=1),
            EvictionCandidate("low", 10, last_access=5, rank=0),
            EvictionCandidate("pinned", 10, last_access=0, protected=True),
        ]

        victims = select_victims(candidates, 40, 20)

        assert [v.key for v in victims] == ["low", "old"]

    def test_protected_entries_can_leave_budget_exceeded(self):
        candidates = [
            EvictionCandidate("pinned", 50, last_access=0, protected=True),
            EvictionCandidate("free", 10, last_access=1),
        ]

        assert [v.key for v in select_victims(candidates, 60, 20)] == ["free"]
