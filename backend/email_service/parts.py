"""
MIME Text Parts

Text part construction with a transfer encoding matching the payload:
7bit for short-lined ASCII, quoted-printable otherwise.
"""

import quopri
from email.mime.nonmultipart import MIMENonMultipart
from typing import Optional

MAX_7BIT_LINE = 998


def encode_text(text: str, charset: str) -> tuple:
    """Encode text, falling back to utf-8 if charset cannot hold it."""
    try:
        return text.encode(charset), charset
    except (UnicodeEncodeError, LookupError):
        return text.encode("utf-8"), "utf-8"


def text_part(
    text: str,
    subtype: str = "plain",
    charset: str = "utf-8",
    flowed: bool = False,
    description: Optional[str] = None,
    disposition: Optional[str] = "inline",
) -> MIMENonMultipart:
    """
    Build a text/<subtype> part.

    When flowed is set the text must already be in flowed form; the
    format=flowed and DelSp=Yes parameters are added.
    """
    text = text.replace("\r\n", "\n")
    data, charset = encode_text(text, charset)

    part = MIMENonMultipart("text", subtype)
    if data.isascii() and all(len(line) <= MAX_7BIT_LINE for line in data.split(b"\n")):
        part.set_payload(data.decode("ascii"))
        part["Content-Transfer-Encoding"] = "7bit"
    else:
        part.set_payload(quopri.encodestring(data).decode("ascii"))
        part["Content-Transfer-Encoding"] = "quoted-printable"

    part.set_param("charset", charset.lower())
    if flowed:
        part.set_param("format", "flowed")
        part.set_param("DelSp", "Yes")
    if disposition:
        part["Content-Disposition"] = disposition
    if description:
        part["Content-Description"] = description
    return part
