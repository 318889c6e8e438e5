"""
Compose API Routes

Compose sessions, attachments, sending, drafts, replies and forwards.
Every operation raises a ComposeError on failure; compose_error_handler
turns it into a result body with an HTTP status per error category.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.dependencies import ContextDep, ServicesDep, SessionStoreDep, get_storages
from compose.exceptions import (
    ComposeError,
    ConfigurationError,
    CryptoError,
    PolicyError,
    StorageError,
    TransportError,
    ValidationError,
)
from compose.models import EncryptMode, HeaderSet, SendOptions, StorageKind, UploadedFile, UploadError
from compose.recipients import expand_addresses
from email_service import (
    attach_messages,
    build_and_send_message,
    forward_message,
    recover_session_expire_draft,
    reply_message,
    resume_draft,
    save_draft,
    session_expire_draft,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class ResultResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    hint: Optional[str] = None


class SessionResponse(BaseModel):
    cache_id: str
    size: int
    attachments: List[Dict[str, Any]]
    remaining_slots: Optional[int] = None
    remaining_bytes: Optional[int] = None
    max_attachment_size: int
    draft_uid: Optional[int] = None


class UploadResponse(ResultResponse):
    notices: List[str] = []
    attachments: List[Dict[str, Any]] = []


class DescriptionUpdate(BaseModel):
    description: Optional[str] = None


class SessionOptions(BaseModel):
    attach_public_key: Optional[bool] = None
    attach_vcard: Optional[bool] = None
    vcard_name: str = ""
    link_attachments: Optional[bool] = None


class MessageRequest(BaseModel):
    """Headers and body of the message being composed."""
    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    body: str = ""
    charset: str = "utf-8"
    html: bool = False
    in_reply_to: str = ""
    references: str = ""

    def header_set(self) -> HeaderSet:
        return HeaderSet(
            to=self.to,
            cc=self.cc,
            bcc=self.bcc,
            subject=self.subject,
            in_reply_to=self.in_reply_to,
            references=self.references,
        )


class SendRequest(MessageRequest):
    save_sent: bool = True
    sent_folder: Optional[str] = None
    save_attachments: bool = True
    reply_type: Optional[str] = Field(default=None, pattern="^(reply|forward)$")
    reply_folder: Optional[str] = None
    reply_uid: Optional[int] = None
    encrypt: EncryptMode = EncryptMode.NONE
    priority: Optional[int] = Field(default=None, ge=1, le=5)
    read_receipt: bool = False


class SendResponse(ResultResponse):
    message_id: Optional[str] = None
    recipients: List[str] = []
    sent_saved: bool = False
    warnings: List[str] = []


class DraftResponse(ResultResponse):
    folder: Optional[str] = None
    uid: Optional[int] = None
    notice: Optional[str] = None


class SourceRequest(BaseModel):
    folder: str = "INBOX"
    uid: int


class ReplyRequest(SourceRequest):
    action: str = Field(default="reply", pattern="^(reply|reply_all|reply_list|all)$")
    to: Optional[str] = None


class ForwardRequest(BaseModel):
    folder: str = "INBOX"
    uids: List[int] = Field(..., min_length=1)
    as_attachment: bool = False


class ComposeResponse(ResultResponse):
    body: str = ""
    headers: Any = None
    format: str = "text"
    charset: Optional[str] = None
    identity: Optional[str] = None


ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PolicyError, status.HTTP_403_FORBIDDEN),
    (CryptoError, status.HTTP_409_CONFLICT),
    (TransportError, status.HTTP_502_BAD_GATEWAY),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(error: ComposeError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def compose_error_handler(request: Request, exc: ComposeError) -> JSONResponse:
    logger.info("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = ResultResponse(success=False, error=exc.message, error_kind=exc.kind, hint=exc.hint)
    return JSONResponse(status_code=status_for(exc), content=body.model_dump())


def _headers_dict(headers) -> Any:
    if headers is None:
        return None
    if isinstance(headers, dict):
        return {k: _headers_dict(v) for k, v in headers.items()}
    return asdict(headers)


def _session_response(session) -> SessionResponse:
    return SessionResponse(
        cache_id=session.cache_id,
        size=session.size,
        attachments=session.attachment_info(),
        remaining_slots=session.remaining_slots(),
        remaining_bytes=session.remaining_bytes(),
        max_attachment_size=session.max_attachment_size(),
        draft_uid=session.draft_uid,
    )


@router.post("/sessions", response_model=SessionResponse)
async def create_session(ctx: ContextDep, store: SessionStoreDep):
    session = await store.open()
    session.modified = True
    await store.save(session)
    return _session_response(session)


@router.get("/sessions/{cache_id}", response_model=SessionResponse)
async def get_session(ctx: ContextDep, store: SessionStoreDep, cache_id: str):
    return _session_response(await store.open(cache_id))


@router.delete("/sessions/{cache_id}", response_model=ResultResponse)
async def discard_session(ctx: ContextDep, store: SessionStoreDep, cache_id: str):
    await store.discard(await store.open(cache_id))
    return ResultResponse(success=True)


@router.put("/sessions/{cache_id}/options", response_model=SessionResponse)
async def set_session_options(
    ctx: ContextDep,
    store: SessionStoreDep,
    cache_id: str,
    options: SessionOptions,
):
    session = await store.open(cache_id)
    if options.attach_public_key is not None:
        session.set_attach_public_key(options.attach_public_key)
    if options.attach_vcard is not None:
        session.set_attach_vcard(options.attach_vcard, options.vcard_name)
    if options.link_attachments is not None:
        session.set_link_attachments(options.link_attachments)
    await store.save(session)
    return _session_response(session)


@router.post("/sessions/{cache_id}/attachments", response_model=UploadResponse)
async def upload_attachments(
    ctx: ContextDep,
    store: SessionStoreDep,
    cache_id: str,
    files: List[UploadFile] = File(...),
):
    """Attach uploaded files; each file is accepted or rejected on its own."""
    session = await store.open(cache_id)

    uploads = []
    for upload in files:
        data = await upload.read(ctx.settings.file_upload_limit + 1)
        error = None
        if len(data) > ctx.settings.file_upload_limit:
            error = UploadError.SIZE
        uploads.append(UploadedFile(
            filename=upload.filename or "",
            content_type=upload.content_type or "",
            data=data if error is None else b"",
            error=error,
        ))

    success, notices = await session.add_files_from_upload(uploads)
    await store.save(session)

    return UploadResponse(
        success=success,
        notices=notices,
        attachments=session.attachment_info(),
    )


@router.delete("/sessions/{cache_id}/attachments/{slot}")
async def delete_attachment(ctx: ContextDep, store: SessionStoreDep, cache_id: str, slot: int):
    session = await store.open(cache_id)
    removed = await session.remove(slot)
    await store.save(session)
    return {"success": True, "removed": removed}


@router.patch("/sessions/{cache_id}/attachments/{slot}", response_model=SessionResponse)
async def update_attachment(
    ctx: ContextDep,
    store: SessionStoreDep,
    cache_id: str,
    slot: int,
    update: DescriptionUpdate,
):
    session = await store.open(cache_id)
    session.update(slot, description=update.description)
    await store.save(session)
    return _session_response(session)


@router.post("/sessions/{cache_id}/send", response_model=SendResponse)
async def send_message(
    ctx: ContextDep,
    store: SessionStoreDep,
    services: ServicesDep,
    cache_id: str,
    request: SendRequest,
):
    session = await store.open(cache_id)

    reply_index = None
    if request.reply_folder and request.reply_uid is not None:
        reply_index = (request.reply_folder, request.reply_uid)

    options = SendOptions(
        save_sent=request.save_sent,
        sent_folder=request.sent_folder or ctx.prefs.sent_mail_folder,
        save_attachments=request.save_attachments,
        reply_type=request.reply_type,
        reply_index=reply_index,
        encrypt=request.encrypt,
        priority=request.priority,
        read_receipt=request.read_receipt,
    )

    try:
        result = await build_and_send_message(
            ctx,
            session,
            services,
            request.body,
            request.header_set(),
            charset=request.charset,
            html=request.html,
            options=options,
        )
    finally:
        await store.save(session)

    return SendResponse(
        success=True,
        message_id=result.message_id,
        recipients=result.recipients,
        sent_saved=result.sent_saved,
        warnings=result.warnings,
    )


@router.post("/sessions/{cache_id}/draft", response_model=DraftResponse)
async def save_draft_endpoint(
    ctx: ContextDep,
    store: SessionStoreDep,
    services: ServicesDep,
    cache_id: str,
    request: MessageRequest,
):
    session = await store.open(cache_id)
    saved = await save_draft(
        ctx, session, services, request.header_set(), request.body, request.charset, request.html
    )
    await store.save(session)
    return DraftResponse(success=True, **saved)


@router.post("/sessions/{cache_id}/session-expire", response_model=ResultResponse)
async def session_expire_endpoint(
    ctx: ContextDep,
    store: SessionStoreDep,
    services: ServicesDep,
    cache_id: str,
    request: MessageRequest,
):
    session = await store.open(cache_id)
    await session_expire_draft(
        ctx,
        session,
        services,
        get_storages()[StorageKind.VFS],
        request.header_set(),
        request.body,
        request.charset,
        request.html,
    )
    return ResultResponse(success=True)


@router.post("/drafts/recover", response_model=DraftResponse)
async def recover_draft_endpoint(ctx: ContextDep, services: ServicesDep):
    notice = await recover_session_expire_draft(ctx, services, get_storages()[StorageKind.VFS])
    return DraftResponse(success=notice is not None, notice=notice, folder=ctx.prefs.drafts_folder)


@router.post("/sessions/{cache_id}/resume", response_model=ComposeResponse)
async def resume_draft_endpoint(
    ctx: ContextDep,
    store: SessionStoreDep,
    services: ServicesDep,
    cache_id: str,
    uid: int = Query(...),
):
    session = await store.open(cache_id)
    text = await resume_draft(ctx, session, services, uid)
    await store.save(session)
    return ComposeResponse(
        success=True,
        body=text.body,
        headers=_headers_dict(text.headers),
        format=text.format,
        charset=text.charset,
        identity=text.identity,
    )


@router.post("/reply", response_model=ComposeResponse)
async def reply_endpoint(ctx: ContextDep, services: ServicesDep, request: ReplyRequest):
    message = await services.folders.fetch_message(request.folder, request.uid)
    text = reply_message(request.action, message, ctx, request.to)
    return ComposeResponse(
        success=True,
        body=text.body,
        headers=_headers_dict(text.headers),
        format=text.format,
        charset=text.charset,
    )


@router.post("/sessions/{cache_id}/forward", response_model=ComposeResponse)
async def forward_endpoint(
    ctx: ContextDep,
    store: SessionStoreDep,
    services: ServicesDep,
    cache_id: str,
    request: ForwardRequest,
):
    messages = [await services.folders.fetch_message(request.folder, uid) for uid in request.uids]

    if request.as_attachment or len(messages) > 1:
        session = await store.open(cache_id)
        result = await attach_messages(session, messages)
        await store.save(session)
        return ComposeResponse(success=True, headers={"subject": result["subject"]})

    text = forward_message(messages[0], ctx)
    return ComposeResponse(
        success=True,
        body=text.body,
        headers=_headers_dict(text.headers),
        format=text.format,
        charset=text.charset,
    )


@router.get("/addresses/expand")
async def expand_addresses_endpoint(ctx: ContextDep, services: ServicesDep, text: str = Query(...)):
    matches = await expand_addresses(text, services.address_book, ctx.prefs.add_source)
    return {"matches": matches}
