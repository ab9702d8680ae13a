# tests/test_models.py
"""Tests for the data models and helpers used by meowpad."""
import datetime
import uuid
from datetime import timedelta, timezone

import pytest
from pydantic import ValidationError

from meowpad.exceptions import InvalidTagError, InvalidTagTargetError, InvalidUrlError
from meowpad.models.schema import (
    ItemRef,
    Link,
    LinkRef,
    Note,
    NoteRef,
    Relation,
    bump_modified,
    ensure_timezone_aware,
    id_timestamp,
    new_id,
    utc_now,
)
from meowpad.utils import normalize_url, slugify


class TestIdentifiers:
    """Tests for time-ordered id generation."""

    def test_new_id_is_version_7(self):
        """Ids use the UUID version 7 layout."""
        identifier = new_id()
        assert identifier.version == 7
        assert identifier.variant == uuid.RFC_4122

    def test_ids_strictly_increase(self):
        """Ids minted in sequence sort in creation order, even in one millisecond."""
        ids = [new_id() for _ in range(2000)]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_byte_order_matches_creation_order(self):
        """The stored 16-byte form sorts the same way as the ids."""
        ids = [new_id() for _ in range(200)]
        assert [i.bytes for i in ids] == sorted(i.bytes for i in ids)

    def test_id_timestamp_is_creation_time(self):
        """The embedded timestamp is the time of creation (ms precision)."""
        before = utc_now() - timedelta(milliseconds=5)
        identifier = new_id()
        after = utc_now() + timedelta(milliseconds=5)
        assert before <= id_timestamp(identifier) <= after


class TestTimestamps:
    """Tests for the timestamp helpers."""

    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo is not None

    def test_naive_datetime_treated_as_utc(self):
        naive = datetime.datetime(2024, 1, 2, 3, 4, 5)
        aware = ensure_timezone_aware(naive)
        assert aware.tzinfo == timezone.utc
        assert aware.replace(tzinfo=None) == naive

    def test_bump_modified_never_goes_backwards(self):
        """A previous value in the future is kept rather than decreased."""
        future = utc_now() + timedelta(hours=1)
        assert bump_modified(future) == future

    def test_bump_modified_advances(self):
        past = utc_now() - timedelta(hours=1)
        assert bump_modified(past) > past


class TestItemRef:
    """Tests for link/note references."""

    def test_from_ids_link(self):
        link_id = new_id()
        ref = ItemRef.from_ids(link_id=link_id)
        assert isinstance(ref, LinkRef)
        assert ref.link_id == link_id
        assert ref.note_id is None

    def test_from_ids_note(self):
        note_id = new_id()
        ref = ItemRef.from_ids(note_id=note_id)
        assert isinstance(ref, NoteRef)
        assert ref.note_id == note_id
        assert ref.link_id is None

    def test_from_ids_rejects_both(self):
        with pytest.raises(InvalidTagTargetError):
            ItemRef.from_ids(link_id=new_id(), note_id=new_id())

    def test_from_ids_rejects_neither(self):
        with pytest.raises(InvalidTagTargetError):
            ItemRef.from_ids()

    def test_refs_of_different_kinds_differ(self):
        identifier = new_id()
        assert LinkRef(id=identifier) == LinkRef(id=identifier)
        assert LinkRef(id=identifier) != NoteRef(id=identifier)

    def test_str(self):
        identifier = new_id()
        assert str(NoteRef(id=identifier)) == f"note:{identifier}"


class TestEntityModels:
    """Tests for Link, Note and Relation."""

    def test_link_defaults(self):
        link = Link(url="https://example.com/")
        assert link.is_primary is True
        assert link.title is None
        assert link.ref == LinkRef(id=link.id)

    def test_link_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            Link(url="https://example.com/", content="not a field")

    def test_note_title_required(self):
        with pytest.raises(ValidationError):
            Note(title="   ", content="body")
        with pytest.raises(ValidationError):
            Note(title="Title")

    def test_relation_is_frozen(self):
        relation = Relation(primary_link_id=new_id(), related_link_id=new_id())
        with pytest.raises(ValidationError):
            relation.relationship = "via"


class TestSlugify:
    """Tests for tag slug derivation."""

    @pytest.mark.parametrize("name, expected", [
        ("Jacques Torneur", "jacques-torneur"),
        ("Excuse 17", "excuse-17"),
        ("Mr. Bungle", "mr-bungle"),
        (" Ursula K. Le Guin ", "ursula-k-le-guin"),
        ("ns1:ns2:actual term", "ns1:ns2:actual-term"),
        ("  ns1  : ns2 ?: actual term", "ns1:ns2:actual-term"),
        ("Rust", "rust"),
    ])
    def test_valid_names(self, name, expected):
        assert slugify(name) == expected

    @pytest.mark.parametrize("name", ["", "   ", "???", ":foo", "foo:", "foo::bar", "foo: :bar"])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidTagError):
            slugify(name)

    def test_case_insensitive(self):
        assert slugify("Machine Learning") == slugify("machine   learning")


class TestNormalizeUrl:
    """Tests for URL validation and canonical form."""

    @pytest.mark.parametrize("url, expected", [
        ("HTTPS://Example.COM", "https://example.com/"),
        ("http://example.com:80/a#top", "http://example.com/a"),
        ("https://example.com:443/", "https://example.com/"),
        ("http://example.com:8080/x?b=2&a=1", "http://example.com:8080/x?b=2&a=1"),
        ("  https://example.com/path  ", "https://example.com/path"),
        ("https://user:pw@example.com/", "https://user:pw@example.com/"),
    ])
    def test_canonical_form(self, url, expected):
        assert normalize_url(url) == expected

    @pytest.mark.parametrize("url", [
        "",
        "example.com",
        "ftp://example.com/file",
        "mailto:someone@example.com",
        "http://",
        "http://exa mple.com/",
        "http://example.com:notaport/",
    ])
    def test_invalid(self, url):
        with pytest.raises(InvalidUrlError):
            normalize_url(url)

    def test_idempotent(self):
        once = normalize_url("HTTP://Example.com:80")
        assert normalize_url(once) == once
