"""
Image Inliner

Embeds remote images referenced by an HTML body as multipart/related
parts so the message renders without network access.
"""

import logging
from email import encoders
from email.message import Message
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.utils import make_msgid
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from .parts import text_part
from .text_extractor import decode_part

logger = logging.getLogger(__name__)


class ImageInliner:
    """Fetches <img> sources and rewrites them to cid: references."""

    def __init__(
        self,
        timeout: float = 10,
        mail_domain: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.mail_domain = mail_domain
        self._transport = transport

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> Optional[httpx.Response]:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("Could not fetch inline image %s: %s", url, e)
            return None
        if response.status_code != 200:
            logger.warning("Could not fetch inline image %s: HTTP %d", url, response.status_code)
            return None
        return response

    async def inline(self, html_part: Message) -> Message:
        """
        Replace remote image references in an HTML part.

        Returns:
            A multipart/related part holding the rewritten HTML and the
            images, or html_part itself if no image could be fetched
        """
        charset = html_part.get_content_charset() or "utf-8"
        soup = BeautifulSoup(decode_part(html_part), "html.parser")

        images = []
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for img in soup.find_all("img", src=True):
                src = img["src"]
                if urlparse(src).scheme not in ("http", "https"):
                    continue

                response = await self._fetch(client, src)
                if response is None:
                    continue

                content_type = response.headers.get("content-type", "application/octet-stream")
                maintype, _, subtype = content_type.split(";")[0].strip().partition("/")
                image = MIMEBase(maintype or "application", subtype or "octet-stream")
                image.set_payload(response.content)
                encoders.encode_base64(image)

                cid = make_msgid(domain=self.mail_domain)
                image["Content-ID"] = cid
                name = urlparse(src).path.rsplit("/", 1)[-1]
                if name:
                    image.add_header("Content-Disposition", "attachment", filename=name)
                else:
                    image.add_header("Content-Disposition", "attachment")

                img["src"] = "cid:" + cid[1:-1]
                images.append(image)

        if not images:
            return html_part

        root = text_part(
            str(soup),
            "html",
            charset,
            description=html_part.get("Content-Description"),
            disposition=html_part.get("Content-Disposition"),
        )
        root_cid = make_msgid(domain=self.mail_domain)
        root["Content-ID"] = root_cid

        related = MIMEMultipart("related")
        related.set_param("type", "text/html")
        related.set_param("start", root_cid)
        related.attach(root)
        for image in images:
            related.attach(image)

        logger.debug("Inlined %d images", len(images))
        return related
