#!/usr/bin/env python3

import argparse
import json
import logging
import signal
import sys
from dataclasses import asdict
from typing import Optional, Sequence

from notesync.app import NoteSyncApp
from notesync.errors import Result, SyncError
from notesync.utils import is_valid_passphrase_format

logger = logging.getLogger(__name__)


def _print_json(value) -> None:
    print(json.dumps(value, indent=2, ensure_ascii=False))


def _fail(result: Result) -> int:
    print(f"Error: {result.error}", file=sys.stderr)
    return 1


def cmd_add(app: NoteSyncApp, args) -> int:
    result = app.engine.save_note(args.title, args.description, note_id=args.id)
    if not result.ok:
        return _fail(result)
    print(result.value.id)
    return 0


def cmd_delete(app: NoteSyncApp, args) -> int:
    result = app.engine.delete_note(args.id)
    if not result.ok:
        return _fail(result)
    print(f"Deleted {args.id}")
    return 0


def cmd_show(app: NoteSyncApp, args) -> int:
    result = app.engine.load_note(args.id)
    if not result.ok:
        return _fail(result)
    _print_json(asdict(result.value))
    return 0


def cmd_list(app: NoteSyncApp, args) -> int:
    result = app.engine.list_notes()
    if not result.ok:
        return _fail(result)
    for note in result.value:
        synced = app.store.is_synced(note.id)
        marker = " " if synced else "*"
        print(f"{marker} {note.id}  {note.title}")
    return 0


def cmd_sync(app: NoteSyncApp, args) -> int:
    result = app.engine.sync_now()
    if not result.ok:
        return _fail(result)
    report = result.value
    print(report.push.message)
    print(f"Pulled {report.pull.upserted} notes")
    if report.pull.skipped_undecodable:
        print(f"Skipped {len(report.pull.skipped_undecodable)} notes that could not be decoded")
    return 0


def cmd_pull(app: NoteSyncApp, args) -> int:
    result = app.engine.reconcile()
    if not result.ok:
        return _fail(result)
    _print_json(asdict(result.value))
    return 0


def cmd_join(app: NoteSyncApp, args) -> int:
    result = app.join_account(args.source)
    if not result.ok:
        return _fail(result)
    report = result.value
    print(f"Imported {report.imported} notes from {report.source}")
    if report.skipped:
        print(f"Skipped {len(report.skipped)} notes that could not be decoded")
    return 0


def cmd_passphrase(app: NoteSyncApp, args) -> int:
    service = app.passphrases
    if args.action == "show":
        print(service.get_stored_passphrase() or "(none)")
    elif args.action == "clear":
        service.clear_stored_passphrase()
        print("Passphrase cleared")
    elif args.action == "link":
        print(service.deep_link())
    elif args.action == "parse":
        token = service.extract_passphrase(args.value or sys.stdin.read())
        if token is None:
            print("No passphrase found", file=sys.stderr)
            return 1
        print(token)
    elif args.action == "verify":
        if not args.value:
            print("Error: passphrase required", file=sys.stderr)
            return 2
        result = service.verify_passphrase(args.value)
        if not result.ok:
            return _fail(result)
        print("Account exists" if result.value else "No account found")
        return 0 if result.value else 1
    elif args.action == "set":
        if not args.value:
            print("Error: passphrase required", file=sys.stderr)
            return 2
        if not args.force and not is_valid_passphrase_format(args.value):
            print(
                f"Error: {args.value!r} is not in word-word-NNN form (use --force to store it anyway)",
                file=sys.stderr,
            )
            return 2
        result = service.store_passphrase(args.value)
        if not result.ok:
            return _fail(result)
        print(f"Passphrase set: {result.value}")
    return 0


def cmd_reset(app: NoteSyncApp, args) -> int:
    if not args.yes:
        print("Error: this deletes every local note; pass --yes to confirm", file=sys.stderr)
        return 2
    try:
        app.reset_local_data()
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print("Local data cleared")
    return 0


def cmd_device(app: NoteSyncApp, args) -> int:
    try:
        if args.action == "rotate":
            device_id, moved = app.rotate_device_id()
            print(f"Device id: {device_id} ({moved} notes queued for sync)")
        else:
            print(app.resolver.device_id())
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_stats(app: NoteSyncApp, args) -> int:
    result = app.merger.get_sync_stats(app.resolver.resolve_account_id())
    if not result.ok:
        return _fail(result)
    _print_json(asdict(result.value))
    return 0


def cmd_run(app: NoteSyncApp, args) -> int:
    def signal_handler(signum, frame):
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app.start()
    print("NoteSync running. Press Ctrl+C to stop")
    app.auto_sync.run_forever()
    return 0


def cmd_serve(app: NoteSyncApp, args) -> int:
    import uvicorn

    from notesync.api import create_app

    host = args.host or app.settings.api_host
    port = args.port or app.settings.api_port
    app.start()
    try:
        uvicorn.run(create_app(app), host=host, port=port)
    finally:
        app.stop()
    return 0


def parse_args(argv: Optional[Sequence[str]] = None):
    parser = argparse.ArgumentParser(
        prog="notesync",
        description="NoteSync - offline-first note sync across devices"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose debug logging"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Create or update a note")
    add.add_argument("title")
    add.add_argument("description", nargs="?", default="")
    add.add_argument("--id", default=None, help="Update the note with this id")
    add.set_defaults(func=cmd_add)

    delete = sub.add_parser("delete", help="Delete a note")
    delete.add_argument("id")
    delete.set_defaults(func=cmd_delete)

    show = sub.add_parser("show", help="Show one note")
    show.add_argument("id")
    show.set_defaults(func=cmd_show)

    sub.add_parser("list", help="List notes (* = not yet synced)").set_defaults(func=cmd_list)
    sub.add_parser("sync", help="Push pending changes, then pull").set_defaults(func=cmd_sync)
    sub.add_parser("pull", help="Pull remote notes").set_defaults(func=cmd_pull)

    join = sub.add_parser("join", help="Import another account's notes into this one")
    join.add_argument("source", help="Passphrase or device id of the account to import")
    join.set_defaults(func=cmd_join)

    passphrase = sub.add_parser("passphrase", help="Manage the shared account passphrase")
    passphrase.add_argument("action", choices=["set", "show", "clear", "link", "parse", "verify"])
    passphrase.add_argument("value", nargs="?", default=None)
    passphrase.add_argument("--force", action="store_true", help="Store a passphrase that is not word-word-NNN")
    passphrase.set_defaults(func=cmd_passphrase)

    reset = sub.add_parser("reset", help="Delete all local notes, tombstones and reminders")
    reset.add_argument("--yes", action="store_true", help="Confirm the reset")
    reset.set_defaults(func=cmd_reset)

    device = sub.add_parser("device", help="Show or rotate this device's id")
    device.add_argument("action", nargs="?", choices=["show", "rotate"], default="show")
    device.set_defaults(func=cmd_device)

    sub.add_parser("stats", help="Show remote account statistics").set_defaults(func=cmd_stats)
    sub.add_parser("run", help="Run background sync in the foreground").set_defaults(func=cmd_run)

    serve = sub.add_parser("serve", help="Serve the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("-p", "--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        app = NoteSyncApp.from_env()
    except Exception as e:
        logger.error("Fatal error: %s", e)
        return 1

    with app:
        return args.func(app, args)


if __name__ == "__main__":
    sys.exit(main())
