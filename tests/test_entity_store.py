"""Tests for the EntityStore service layer."""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from meowpad.exceptions import (
    AlreadyTaggedError,
    DuplicateRelationError,
    DuplicateTitleError,
    DuplicateUrlError,
    InvalidTagError,
    InvalidTagTargetError,
    InvalidUrlError,
    LinkNotFoundError,
    NoteNotFoundError,
    SelfRelationError,
    StorageError,
    TagNotFoundError,
    ValidationError,
)
from meowpad.models.schema import (ConflictPolicy, IfTagged, ItemRef, LinkRef,
                                   NoteRef, new_id)
from meowpad.services.query_service import QueryEngine


class TestLinks:
    """Tests for link creation and lookup."""

    def test_create_and_get(self, store):
        link = store.create_link("HTTPS://Example.com", title="Example")
        assert link.url == "https://example.com/"
        fetched = store.get_link(link.id)
        assert fetched == link
        assert store.get_link_by_url("https://example.com") == link

    def test_duplicate_url_fails_by_default(self, store):
        store.create_link("https://example.com/")
        with pytest.raises(DuplicateUrlError):
            store.create_link("https://EXAMPLE.com:443/")

    def test_invalid_url(self, store):
        with pytest.raises(InvalidUrlError):
            store.create_link("javascript:alert(1)")

    def test_merge_updates_existing(self, store):
        original = store.create_link("https://example.com/", title="Old")
        merged = store.create_link(
            "https://example.com/", title="New", on_conflict=ConflictPolicy.MERGE
        )
        assert merged.id == original.id
        assert merged.title == "New"
        assert merged.modified_at >= original.modified_at

    def test_merge_promotes_secondary(self, store):
        secondary = store.create_link("https://example.com/", is_primary=False)
        assert secondary.is_primary is False
        promoted = store.create_link("https://example.com/", on_conflict="merge")
        assert promoted.id == secondary.id
        assert promoted.is_primary is True

    def test_merge_never_demotes(self, store):
        store.create_link("https://example.com/")
        merged = store.create_link(
            "https://example.com/", is_primary=False, on_conflict=ConflictPolicy.MERGE
        )
        assert merged.is_primary is True

    def test_update_missing_link(self, store):
        with pytest.raises(LinkNotFoundError):
            store.update_link(new_id(), title="x")

    def test_update_bumps_modified(self, store):
        link = store.create_link("https://example.com/")
        updated = store.update_link(link.id, description="About examples")
        assert updated.description == "About examples"
        assert updated.created_at == link.created_at
        assert updated.modified_at >= link.modified_at

    def test_driver_error_becomes_storage_error(self, store):
        failure = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(store.links, "create", side_effect=failure):
            with pytest.raises(StorageError):
                store.create_link("https://example.com/")


class TestContent:
    """Tests for indexed link text."""

    def test_update_and_get_content(self, store):
        link = store.create_link("https://example.com/")
        assert store.get_content(link.id) is None
        store.update_content(link.id, "Readable text")
        assert store.get_content(link.id) == "Readable text"

    def test_blank_content_removes_entry(self, store):
        link = store.create_link("https://example.com/")
        store.update_content(link.id, "Readable text")
        store.update_content(link.id, "   ")
        assert store.get_content(link.id) is None

    def test_content_for_missing_link(self, store):
        with pytest.raises(LinkNotFoundError):
            store.update_content(new_id(), "text")


class TestNotes:
    """Tests for notes."""

    def test_create_standalone(self, store):
        note = store.create_note("Body", title="Idea")
        assert note.link_id is None
        assert store.get_note_by_title("Idea") == note

    def test_create_on_link(self, store):
        link = store.create_link("https://example.com/")
        note = store.create_note("Thoughts", title="On example", link_id=link.id)
        assert store.get_note_for_link(link.id) == note

    def test_empty_content_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_note("   ", title="Empty")

    def test_empty_title_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_note("Body", title="")

    def test_missing_link_rejected(self, store):
        with pytest.raises(LinkNotFoundError):
            store.create_note("Body", title="Orphan", link_id=new_id())

    def test_duplicate_title(self, store):
        store.create_note("One", title="Same")
        with pytest.raises(DuplicateTitleError):
            store.create_note("Two", title="Same")

    def test_rename_onto_existing_title(self, store):
        store.create_note("One", title="First")
        second = store.create_note("Two", title="Second")
        with pytest.raises(DuplicateTitleError):
            store.update_note(second.id, title="First")
        assert store.get_note(second.id).title == "Second"

    def test_update_content(self, store):
        note = store.create_note("Draft", title="Essay")
        updated = store.update_note(note.id, content="Final")
        assert updated.content == "Final"
        assert updated.title == "Essay"

    def test_delete_missing(self, store):
        with pytest.raises(NoteNotFoundError):
            store.delete_note(new_id())


class TestEditableContent:
    """Tests for the editor round trip helpers."""

    def test_link_without_note_starts_empty(self, store):
        link = store.create_link("https://example.com/")
        assert store.get_editable_content(link.ref) == ""

    def test_replace_creates_link_note(self, store):
        link = store.create_link("https://example.com/")
        note = store.replace_content(link.ref, "First thoughts")
        assert note.title == link.url
        assert note.link_id == link.id
        assert store.get_editable_content(link.ref) == "First thoughts"

    def test_replace_updates_existing_link_note(self, store):
        link = store.create_link("https://example.com/")
        first = store.replace_content(link.ref, "First")
        second = store.replace_content(link.ref, "Second")
        assert second.id == first.id
        assert store.notes.list_for_link(link.id) == [second]

    def test_replace_note(self, store):
        note = store.create_note("Before", title="Journal")
        store.replace_content(note.ref, "After")
        assert store.get_editable_content(NoteRef(id=note.id)) == "After"

    def test_missing_note(self, store):
        with pytest.raises(NoteNotFoundError):
            store.get_editable_content(NoteRef(id=new_id()))


class TestTags:
    """Tests for tagging links and notes."""

    def test_attach_to_link_and_note(self, store):
        link = store.create_link("https://example.com/")
        note = store.create_note("Body", title="Idea")
        store.attach_tag("Reading List", link.ref)
        store.attach_tag("reading list", note.ref)

        [link_tag] = store.tags_for(link.ref)
        [note_tag] = store.tags_for(note.ref)
        assert link_tag.id == note_tag.id
        assert link_tag.name == "Reading List"
        assert link_tag.slug == "reading-list"

    def test_repeat_raises(self, store):
        link = store.create_link("https://example.com/")
        store.attach_tag("rust", link.ref)
        with pytest.raises(AlreadyTaggedError):
            store.attach_tag("Rust", link.ref)

    def test_repeat_ignored_on_request(self, store):
        link = store.create_link("https://example.com/")
        first = store.attach_tag("rust", link.ref)
        again = store.attach_tag("rust", link.ref, if_tagged=IfTagged.IGNORE)
        assert again.tag.id == first.tag.id
        assert len(store.tags_for(link.ref)) == 1

    def test_missing_target(self, store):
        with pytest.raises(LinkNotFoundError):
            store.attach_tag("rust", LinkRef(id=new_id()))
        with pytest.raises(NoteNotFoundError):
            store.attach_tag("rust", NoteRef(id=new_id()))
        assert store.get_tag_by_name("rust") is None

    def test_target_must_be_link_or_note(self, store):
        with pytest.raises(InvalidTagTargetError):
            store.attach_tag("rust", ItemRef(id=new_id()))

    def test_invalid_name(self, store):
        link = store.create_link("https://example.com/")
        with pytest.raises(InvalidTagError):
            store.attach_tag("???", link.ref)

    def test_attach_bumps_modified(self, store):
        link = store.create_link("https://example.com/")
        store.attach_tag("rust", link.ref)
        assert store.get_link(link.id).modified_at >= link.modified_at

    def test_detach(self, store):
        link = store.create_link("https://example.com/")
        store.attach_tag("rust", link.ref)
        assert store.detach_tag("RUST", link.ref) is True
        assert store.detach_tag("rust", link.ref) is False
        assert store.detach_tag("never-created", link.ref) is False
        assert store.tags_for(link.ref) == []

    def test_counts_and_unused(self, store):
        a = store.create_link("https://a.example/")
        b = store.create_link("https://b.example/")
        store.attach_tag("shared", a.ref)
        store.attach_tag("shared", b.ref)
        store.attach_tag("fleeting", a.ref)
        store.detach_tag("fleeting", a.ref)

        assert store.tags_with_counts() == {"fleeting": 0, "shared": 2}
        assert store.delete_unused_tags() == 1
        assert store.tags_with_counts() == {"shared": 2}

    def test_delete_tag_keeps_items(self, store):
        a = store.create_link("https://a.example/")
        b = store.create_link("https://b.example/", title="Kept")
        note = store.create_note("Body", title="Idea")
        for ref in (a.ref, b.ref, note.ref):
            store.attach_tag("doomed", ref)
        tag = store.get_tag_by_name("doomed")

        assert store.delete_tag(tag.id) == 3
        assert store.get_link(b.id).title == "Kept"
        assert store.get_link(a.id) is not None
        assert store.get_note(note.id) is not None
        assert store.tags_for(a.ref) == []

    def test_delete_missing_tag(self, store):
        with pytest.raises(TagNotFoundError):
            store.delete_tag(new_id())


class TestRelations:
    """Tests for directed relations between links."""

    def test_relate(self, store):
        a = store.create_link("https://a.example/")
        b = store.create_link("https://b.example/")
        relation = store.relate_links(a.id, b.id, relationship="via")
        assert relation.relationship == "via"
        assert store.relations.get(a.id, b.id) == relation
        assert store.relations.get(b.id, a.id) is None

    def test_reverse_edge_is_separate(self, store):
        a = store.create_link("https://a.example/")
        b = store.create_link("https://b.example/")
        store.relate_links(a.id, b.id)
        store.relate_links(b.id, a.id)
        assert store.relations.count_connections(a.id) == 2

    def test_self_relation(self, store):
        a = store.create_link("https://a.example/")
        with pytest.raises(SelfRelationError):
            store.relate_links(a.id, a.id)

    def test_duplicate_relation(self, store):
        a = store.create_link("https://a.example/")
        b = store.create_link("https://b.example/")
        store.relate_links(a.id, b.id)
        with pytest.raises(DuplicateRelationError):
            store.relate_links(a.id, b.id, relationship="again")

    def test_missing_endpoint(self, store):
        a = store.create_link("https://a.example/")
        with pytest.raises(LinkNotFoundError):
            store.relate_links(a.id, new_id())

    def test_unrelate(self, store):
        a = store.create_link("https://a.example/")
        b = store.create_link("https://b.example/")
        store.relate_links(a.id, b.id)
        assert store.unrelate_links(a.id, b.id) is True
        assert store.unrelate_links(a.id, b.id) is False


class TestCascadingDelete:
    """Tests for deleting a link together with everything hanging off it."""

    def test_delete_link_removes_dependents(self, store):
        link = store.create_link("https://doomed.example/")
        other = store.create_link("https://other.example/")
        note = store.create_note("Aardvark notes", title="Doomed note", link_id=link.id)
        store.attach_tag("t", link.ref)
        store.attach_tag("t", note.ref)
        store.relate_links(link.id, other.id)
        store.relate_links(other.id, link.id)
        store.update_content(link.id, "aardvark habitat")

        store.delete_link(link.id)

        assert store.get_link(link.id) is None
        assert store.get_note(note.id) is None
        assert store.get_content(link.id) is None
        assert store.tags_with_counts() == {"t": 0}
        assert store.relations.count_connections(other.id) == 0
        assert QueryEngine(store).search("aardvark") == []

    def test_delete_inside_transaction(self, store):
        link = store.create_link("https://doomed.example/")
        note = store.create_note("Body", title="Doomed", link_id=link.id)
        with store.transaction():
            store.delete_link(link.id)
            assert store.get_link(link.id) is None
            assert store.get_note(note.id) is None

    def test_delete_missing_link(self, store):
        with pytest.raises(LinkNotFoundError):
            store.delete_link(new_id())


class TestTransactions:
    """Tests for grouping operations into one atomic unit."""

    def test_group_commits_together(self, store):
        with store.transaction():
            link = store.create_link("https://example.com/")
            store.attach_tag("reading", link.ref)
            store.create_note("Body", title="Note", link_id=link.id)
        assert [t.name for t in store.tags_for(link.ref)] == ["reading"]
        assert store.get_note_for_link(link.id) is not None

    def test_error_rolls_back_everything(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                link = store.create_link("https://example.com/")
                store.attach_tag("reading", link.ref)
                raise RuntimeError("abort")
        assert store.get_link_by_url("https://example.com/") is None
        assert store.get_tag_by_name("reading") is None

    def test_interrupt_rolls_back(self, store):
        with pytest.raises(KeyboardInterrupt):
            with store.transaction():
                store.create_link("https://example.com/")
                raise KeyboardInterrupt
        assert store.get_link_by_url("https://example.com/") is None
        assert not store.db.in_transaction

    def test_caught_error_keeps_transaction_usable(self, store):
        with store.transaction():
            store.create_note("One", title="Same")
            with pytest.raises(DuplicateTitleError):
                store.create_note("Two", title="Same")
            store.create_note("Three", title="Other")
        assert store.get_note_by_title("Same").content == "One"
        assert store.get_note_by_title("Other") is not None

    def test_reads_see_pending_writes(self, store):
        with store.transaction():
            link = store.create_link("https://example.com/")
            assert store.get_link(link.id) == link
