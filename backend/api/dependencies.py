import logging
from typing import Annotated, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from jose import JWTError, jwt

from compose.context import Identity, Preferences, RequestContext
from compose.models import StorageKind
from config import settings
from crypto_engine import SMimeTransform
from email_service import DeliveryServices, ImapFolderStore, SmtpTransport
from email_service.image_inliner import ImageInliner
from email_service.linker import AttachmentLinker
from storage.address_book import SqlAddressBook
from storage.blobs import BlobStorage, create_blob_storages
from storage.history import SqlDeliveryHistory
from storage.session_store import SessionStore

logger = logging.getLogger(__name__)

_storages: Optional[Dict[StorageKind, BlobStorage]] = None


def get_storages() -> Dict[StorageKind, BlobStorage]:
    global _storages
    if _storages is None:
        _storages = create_blob_storages(settings.attachment_dir)
    return _storages


async def verify_api_token(
    authorization: Annotated[str | None, Header()] = None
) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = parts[1]

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=["HS256"],
        )
        return payload.get("sub", "frontend")
    except JWTError as e:
        logger.warning("Invalid token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


TokenDep = Annotated[str, Depends(verify_api_token)]


async def get_request_context(
    user: TokenDep,
    request: Request,
    x_smime_passphrase: Annotated[str | None, Header()] = None,
    x_rich_text: Annotated[bool, Header()] = False,
) -> RequestContext:
    """Per-request state for the authenticated user."""
    from_addr = user if "@" in user else f"{user}@{settings.mail_domain}"
    return RequestContext(
        user=user,
        identity=Identity(from_addr=from_addr),
        prefs=Preferences(),
        settings=settings,
        remote_addr=request.client.host if request.client else "127.0.0.1",
        rich_text=x_rich_text,
        passphrase=x_smime_passphrase,
    )


ContextDep = Annotated[RequestContext, Depends(get_request_context)]


def _load_crypto() -> Optional[SMimeTransform]:
    if not settings.smime_certificate_file or not settings.smime_key_file:
        return None
    try:
        return SMimeTransform(
            settings.smime_certificate_file.read_bytes(),
            settings.smime_key_file.read_bytes(),
        )
    except (OSError, ValueError) as e:
        logger.error("Could not load S/MIME credentials: %s", e)
        return None


def get_services() -> DeliveryServices:
    return DeliveryServices(
        transport=SmtpTransport(settings),
        folders=ImapFolderStore(settings),
        history=SqlDeliveryHistory() if settings.sentmail_driver == "sql" else None,
        address_book=SqlAddressBook(),
        crypto=_load_crypto(),
        image_inliner=ImageInliner(settings.image_fetch_timeout, settings.mail_domain),
        linker=AttachmentLinker(get_storages()[StorageKind.VFS], settings),
    )


def get_session_store() -> SessionStore:
    return SessionStore(get_storages(), settings)


ServicesDep = Annotated[DeliveryServices, Depends(get_services)]
SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
