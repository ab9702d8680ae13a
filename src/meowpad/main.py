#!/usr/bin/env python
"""Command line entry point for meowpad."""
import argparse
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import List, Optional

from meowpad import __version__
from meowpad.config import config
from meowpad.editor import edit_text
from meowpad.exceptions import (
    InvalidUrlError,
    LinkNotFoundError,
    MeowpadError,
    MigrationError,
    NotFoundError,
)
from meowpad.models.schema import ConflictPolicy, IfTagged, ItemRef, Link, LinkRef, Note, NoteRef
from meowpad.observability import configure_logging
from meowpad.services.capture_service import CaptureService
from meowpad.services.entity_store import EntityStore, open_store
from meowpad.services.query_service import (
    LinkRecord,
    QueryEngine,
    QueryFilter,
    TagMatch,
)
from meowpad.utils import normalize_url

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="meowpad", description="A web-aware notepad")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("MEOWPAD_DATABASE_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    add = commands.add_parser("add", help="Capture a URL")
    add.add_argument("url")
    add.add_argument("--title")
    add.add_argument("--description")
    add.add_argument("--tag", "-t", action="append", default=[], dest="tags")
    add.add_argument("--refresh", action="store_true", help="Re-fetch a known URL")
    add.add_argument("--message", "-m", dest="note", help="Note to attach to the link")
    add.add_argument(
        "--related-link", action="append", default=[], dest="related",
        help="URL this link points to (repeatable)",
    )
    add.add_argument("--relationship", "-r", help="Label for the --related-link relations")

    note = commands.add_parser("note", help="Write a note, standalone or on a link")
    note.add_argument("title", help="Note title, or a URL to edit that link's note")
    note.add_argument("--message", "-m", help="Note text; opens the editor when omitted")
    note.add_argument("--tag", "-t", action="append", default=[], dest="tags")

    list_cmd = commands.add_parser("list", help="List links or notes")
    list_cmd.add_argument("--tag", "-t", action="append", default=[], dest="tags")
    list_cmd.add_argument("--any", action="store_true", help="Match any tag instead of all")
    list_cmd.add_argument("--text", help="Full-text filter")
    list_cmd.add_argument("--notes", action="store_true", help="List notes instead of links")
    list_cmd.add_argument("--all", action="store_true", help="Include secondary links")
    list_cmd.add_argument("--limit", type=int)

    search = commands.add_parser("search", help="Full-text search")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=20)

    show = commands.add_parser("show", help="Show a link with its tags, notes and relations")
    show.add_argument("url")

    tag = commands.add_parser("tag", help="Tag a link (by URL) or a note (by title)")
    tag.add_argument("target")
    tag.add_argument("tags", nargs="+")
    tag.add_argument("--remove", action="store_true", help="Remove the tags instead")

    relate = commands.add_parser("relate", help="Relate a link to another URL")
    relate.add_argument("url")
    relate.add_argument("related_url")
    relate.add_argument("--relationship", "-r")
    relate.add_argument("--remove", action="store_true", help="Remove the relation instead")

    rm = commands.add_parser("rm", help="Delete a link (by URL), a note (by title) or a tag")
    rm.add_argument("target")
    rm.add_argument("--tag", action="store_true", help="Target names a tag")

    return parser.parse_args(argv)


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)


def resolve_target(store: EntityStore, value: str) -> ItemRef:
    """A link by URL, else a note by title, else a link or note by id."""
    try:
        link = store.get_link_by_url(value)
    except InvalidUrlError:
        link = None
    if link is not None:
        return link.ref

    note = store.get_note_by_title(value)
    if note is not None:
        return note.ref

    try:
        identifier = uuid.UUID(value)
    except ValueError:
        raise NotFoundError(value) from None
    if store.get_link(identifier) is not None:
        return LinkRef(id=identifier)
    if store.get_note(identifier) is not None:
        return NoteRef(id=identifier)
    raise NotFoundError(value)


def _format_link(link: Link) -> str:
    marker = "" if link.is_primary else " (secondary)"
    title = f"  {link.title}" if link.title else ""
    return f"{link.modified_at:%Y-%m-%d}  {link.url}{title}{marker}"


def _format_note(note: Note) -> str:
    return f"{note.modified_at:%Y-%m-%d}  {note.title}"


def cmd_add(store: EntityStore, args: argparse.Namespace) -> None:
    outcome = CaptureService(store).capture(
        args.url,
        refresh=args.refresh,
        title=args.title,
        description=args.description,
        tags=args.tags,
        note=args.note,
        related=[(url, args.relationship) for url in args.related],
    )
    print(f"{outcome.status.value}: {outcome.link.url} [{outcome.extraction.value}]")
    if outcome.error is not None:
        print(f"warning: {outcome.error.message}", file=sys.stderr)


def cmd_note(store: EntityStore, args: argparse.Namespace) -> None:
    try:
        url = normalize_url(args.title)
    except InvalidUrlError:
        url = None

    if url is not None:
        link = store.get_link_by_url(url)
        if link is None:
            raise LinkNotFoundError(url)
        target: ItemRef = link.ref
    else:
        existing = store.get_note_by_title(args.title)
        target = existing.ref if existing else None

    if args.message is not None:
        text = args.message
    else:
        initial = store.get_editable_content(target) if target is not None else ""
        text = edit_text(initial)
        if text == initial:
            print("No changes")
            return

    with store.transaction():
        if target is None:
            note = store.create_note(text, title=args.title)
        else:
            note = store.replace_content(target, text)
        for name in args.tags:
            store.attach_tag(name, note.ref, if_tagged=IfTagged.IGNORE)
    print(f"Saved note '{note.title}'")


def cmd_list(store: EntityStore, args: argparse.Namespace) -> None:
    query_filter = QueryFilter(
        tags=args.tags,
        tag_match=TagMatch.ANY if args.any else TagMatch.ALL,
        text=args.text,
        primary_only=not args.all,
        limit=args.limit,
    )
    engine = QueryEngine(store)
    if args.notes:
        for note in engine.notes(query_filter):
            print(_format_note(note))
    else:
        for link in engine.links(query_filter):
            print(_format_link(link))


def cmd_search(store: EntityStore, args: argparse.Namespace) -> None:
    for result in QueryEngine(store).search(args.query, limit=args.limit):
        if isinstance(result.item, Link):
            print(f"{result.score:7.2f}  link  {result.item.url}")
        else:
            print(f"{result.score:7.2f}  note  {result.item.title}")


def cmd_show(store: EntityStore, args: argparse.Namespace) -> None:
    link = store.get_link_by_url(args.url)
    if link is None:
        raise LinkNotFoundError(args.url)
    engine = QueryEngine(store)
    record = LinkRecord(
        link=link,
        tags=store.tags_for(link.ref),
        notes=store.notes.list_for_link(link.id),
        related=engine.related(link.id),
        content=store.get_content(link.id),
    )
    print(_format_link(record.link))
    if record.link.description:
        print(f"  {record.link.description}")
    if record.tags:
        print("  tags: " + ", ".join(tag.name for tag in record.tags))
    for related in record.related:
        label = f" ({related.relationship})" if related.relationship else ""
        print(f"  -> {related.link.url}{label}")
    for referrer in engine.referrers(link.id):
        label = f" ({referrer.relationship})" if referrer.relationship else ""
        print(f"  <- {referrer.link.url}{label}")
    for note in record.notes:
        print(f"  note: {note.title}")
    print(f"  indexed: {'yes' if record.content else 'no'}")


def cmd_tag(store: EntityStore, args: argparse.Namespace) -> None:
    target = resolve_target(store, args.target)
    with store.transaction():
        for name in args.tags:
            if args.remove:
                store.detach_tag(name, target)
            else:
                store.attach_tag(name, target, if_tagged=IfTagged.IGNORE)
    print(", ".join(tag.name for tag in store.tags_for(target)) or "(no tags)")


def cmd_relate(store: EntityStore, args: argparse.Namespace) -> None:
    link = store.get_link_by_url(args.url)
    if link is None:
        raise LinkNotFoundError(args.url)
    with store.transaction():
        if args.remove:
            related = store.get_link_by_url(args.related_url)
            if related is None or not store.unrelate_links(link.id, related.id):
                print("No such relation")
                return
            print(f"Unrelated {link.url} -> {related.url}")
            return
        # Unknown targets are kept as secondary links
        related = store.create_link(
            args.related_url, is_primary=False, on_conflict=ConflictPolicy.MERGE
        )
        store.relate_links(link.id, related.id, relationship=args.relationship)
    print(f"Related {link.url} -> {related.url}")


def cmd_rm(store: EntityStore, args: argparse.Namespace) -> None:
    if args.tag:
        tag = store.get_tag_by_name(args.target)
        if tag is None:
            raise NotFoundError(args.target)
        count = store.delete_tag(tag.id)
        print(f"Deleted tag '{tag.name}' ({count} items untagged)")
        return
    target = resolve_target(store, args.target)
    if isinstance(target, LinkRef):
        store.delete_link(target.id)
    else:
        store.delete_note(target.id)
    print(f"Deleted {target.kind} {args.target}")


COMMANDS = {
    "add": cmd_add,
    "note": cmd_note,
    "list": cmd_list,
    "search": cmd_search,
    "show": cmd_show,
    "tag": cmd_tag,
    "relate": cmd_relate,
    "rm": cmd_rm,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Run a meowpad command."""
    args = parse_args(argv)
    update_config(args)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(config.get_log_dir(), level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    try:
        store = open_store()
    except MigrationError as e:
        logger.error(f"Failed to initialize database: {e}")
        print(f"error: {e.message}", file=sys.stderr)
        return 1

    try:
        COMMANDS[args.command](store, args)
    except KeyboardInterrupt:
        print("Interrupted; the open transaction was rolled back", file=sys.stderr)
        return 130
    except MeowpadError as e:
        logger.debug(f"Command {args.command} failed: {e}")
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
