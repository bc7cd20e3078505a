from dataclasses import asdict
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from notesync.app import NoteSyncApp
from notesync.errors import (
    AccountNotFound,
    AuthenticationFailed,
    InvalidToken,
    NetworkError,
    NotFound,
    RemotePermissionError,
    Result,
    SyncError,
)
from notesync.models import Note
from notesync.schema import JoinIn, NoteIn, PassphraseIn


def status_for(error: SyncError) -> int:
    if isinstance(error, (NotFound, AccountNotFound)):
        return 404
    if isinstance(error, (RemotePermissionError, AuthenticationFailed)):
        return 403
    if isinstance(error, NetworkError):
        return 503
    if isinstance(error, InvalidToken):
        return 422
    return 500


def error_response(error: SyncError) -> JSONResponse:
    return JSONResponse(status_code=status_for(error), content={"error": str(error)})


def invalid_body(e: ValueError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": str(e)})


def note_json(note: Note) -> Dict[str, Any]:
    return asdict(note)


async def read_body(request: Request, model):
    """Parse and validate a JSON body. Malformed JSON and pydantic errors both raise ``ValueError``."""
    payload = await request.json()
    return model.model_validate(payload)


def create_app(app_context: NoteSyncApp) -> FastAPI:
    app = FastAPI(title="NoteSync")
    engine = app_context.engine

    def respond(result: Result, render=lambda value: value):
        if not result.ok:
            return error_response(result.error)
        return render(result.value)

    @app.get("/")
    def root():
        return "running"

    @app.get("/notes")
    async def list_notes():
        result = await run_in_threadpool(engine.list_notes)
        return respond(result, lambda notes: [note_json(n) for n in notes])

    @app.get("/notes/{note_id}")
    async def get_note(note_id: str):
        result = await run_in_threadpool(engine.load_note, note_id)
        return respond(result, note_json)

    @app.post("/notes", status_code=201)
    async def create_note(request: Request):
        try:
            body = await read_body(request, NoteIn)
        except ValueError as e:
            return invalid_body(e)
        result = await run_in_threadpool(engine.save_note, body.title, body.description)
        return respond(result, note_json)

    @app.put("/notes/{note_id}")
    async def update_note(note_id: str, request: Request):
        try:
            body = await read_body(request, NoteIn)
        except ValueError as e:
            return invalid_body(e)
        result = await run_in_threadpool(engine.save_note, body.title, body.description, note_id)
        return respond(result, note_json)

    @app.delete("/notes/{note_id}")
    async def delete_note(note_id: str):
        result = await run_in_threadpool(engine.delete_note, note_id)
        return respond(result, lambda pending: {"ok": True, "pendingDeletion": asdict(pending)})

    @app.post("/sync")
    async def sync():
        result = await run_in_threadpool(engine.sync_now)
        return respond(
            result,
            lambda report: {"message": report.push.message, **asdict(report)},
        )

    @app.post("/sync/pull")
    async def pull():
        result = await run_in_threadpool(engine.reconcile)
        return respond(result, asdict)

    @app.post("/account/join")
    async def join_account(request: Request):
        try:
            body = await read_body(request, JoinIn)
        except ValueError as e:
            return invalid_body(e)
        result = await run_in_threadpool(app_context.join_account, body.source)
        return respond(result, asdict)

    @app.get("/account")
    async def account():
        resolver = app_context.resolver
        return {
            "deviceId": await run_in_threadpool(resolver.device_id),
            "accountId": await run_in_threadpool(resolver.resolve_account_id),
            "hasPassphrase": await run_in_threadpool(resolver.stored_passphrase) is not None,
            "deepLink": await run_in_threadpool(app_context.passphrases.deep_link),
            "pendingSync": await run_in_threadpool(app_context.store.has_pending_sync),
        }

    @app.post("/account/passphrase")
    async def set_passphrase(request: Request):
        try:
            body = await read_body(request, PassphraseIn)
        except ValueError as e:
            return invalid_body(e)
        result = await run_in_threadpool(app_context.passphrases.store_passphrase, body.passphrase)
        return respond(result, lambda passphrase: {"ok": True, "passphrase": passphrase})

    @app.get("/account/stats")
    async def stats():
        token = await run_in_threadpool(app_context.resolver.resolve_account_id)
        result = await run_in_threadpool(app_context.merger.get_sync_stats, token)
        return respond(result, asdict)

    @app.post("/account/verify")
    async def verify_passphrase(request: Request):
        try:
            body = await read_body(request, PassphraseIn)
        except ValueError as e:
            return invalid_body(e)
        result = await run_in_threadpool(app_context.passphrases.verify_passphrase, body.passphrase)
        return respond(result, lambda exists: {"exists": exists})

    @app.post("/reset")
    async def reset_local_data():
        try:
            await run_in_threadpool(app_context.reset_local_data)
        except SyncError as e:
            return error_response(e)
        return {"ok": True}

    return app
