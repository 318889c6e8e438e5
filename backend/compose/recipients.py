"""
Recipient Parsing

Splits, validates and normalizes the To/Cc/Bcc fields of an outgoing
message. Group addresses are expanded for delivery but keep their group
wrapper in the rebuilt header string.
"""

import logging
import re
from email.headerregistry import Address
from email.utils import getaddresses
from typing import Dict, List, Optional, Tuple

from .exceptions import InvalidAddressError, NoRecipientsError, TooManyRecipientsError
from .models import AddressGroup, RecipientSet

logger = logging.getLogger(__name__)

RECIPIENT_FIELDS = ("to", "cc", "bcc")

_HOST_RE = re.compile(r"^(\[[0-9A-Fa-f:.]+\]|[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.?)$")


def explode(text: str, delimiters: str = ",;") -> List[str]:
    """
    Split an address string on delimiters outside of quotes, angle
    brackets, comments and group definitions.
    """
    tokens = []
    current = []
    quoted = False
    angle = 0
    comment = 0
    group = False
    escaped = False

    for char in text:
        if escaped:
            current.append(char)
            escaped = False
            continue
        if char == "\\":
            current.append(char)
            escaped = True
            continue
        if char == '"' and not comment:
            quoted = not quoted
        elif not quoted:
            if char == "(":
                comment += 1
            elif char == ")" and comment:
                comment -= 1
            elif char == "<" and not comment:
                angle += 1
            elif char == ">" and angle:
                angle -= 1
            elif char == ":" and not (angle or comment or group):
                group = True
            elif char == ";" and group:
                group = False
                current.append(char)
                tokens.append("".join(current))
                current = []
                continue
            elif char in delimiters and not (angle or comment or group):
                tokens.append("".join(current))
                current = []
                continue
        current.append(char)

    tokens.append("".join(current))
    return [t.strip() for t in tokens if t.strip()]


def split_group(token: str) -> Optional[Tuple[str, str]]:
    """Return (group name, member list) if token is a group address."""
    quoted = False
    for i, char in enumerate(token):
        if char == '"':
            quoted = not quoted
        elif char == "<" and not quoted:
            return None
        elif char == ":" and not quoted:
            name = token[:i].strip().strip('"')
            members = token[i + 1:].strip()
            if members.endswith(";"):
                members = members[:-1]
            return name, members
    return None


def normalize_address(name: str, addr: str, original: str, mail_domain: str) -> str:
    """
    Validate one mailbox and return it in header form.

    The local part must be 7-bit; an empty host becomes mail_domain;
    internationalized hosts are converted to their ASCII form.
    """
    local, at, host = addr.rpartition("@")
    if not at:
        local, host = addr, ""

    if not local or any(c.isspace() for c in local):
        raise InvalidAddressError(f"Invalid e-mail address: {original}.")
    if not local.isascii():
        raise InvalidAddressError(f"Invalid character in e-mail address: {original}.")

    host = host.strip() or mail_domain
    try:
        host = host.encode("idna").decode("ascii")
    except UnicodeError:
        raise InvalidAddressError(f"Invalid e-mail address: {original}.")
    if not _HOST_RE.match(host):
        raise InvalidAddressError(f"Invalid e-mail address: {original}.")

    return str(Address(display_name=name, username=local, domain=host))


def parse_address_list(text: str, mail_domain: str) -> Tuple[List[str], str, List[AddressGroup]]:
    """
    Parse one address header.

    Returns:
        Tuple of (flat address list, rebuilt header string, groups)
    """
    addresses = []
    groups = []
    pieces = []

    for token in explode(text or ""):
        group = split_group(token)
        if group is not None:
            name, members = group
            member_addrs = []
            for member_name, member in getaddresses([members]):
                if not member:
                    raise InvalidAddressError(f"Invalid e-mail address: {token}.")
                member_addrs.append(normalize_address(member_name, member, token, mail_domain))
            addresses.extend(member_addrs)
            groups.append(AddressGroup(name, member_addrs))
            pieces.append(f"{name}: {', '.join(member_addrs)}; ")
            continue

        parsed = getaddresses([token])
        if not parsed or not any(addr for _, addr in parsed):
            raise InvalidAddressError(f"Invalid e-mail address: {token}.")
        for name, addr in parsed:
            if not addr:
                raise InvalidAddressError(f"Invalid e-mail address: {token}.")
            formatted = normalize_address(name, addr, token, mail_domain)
            addresses.append(formatted)
            pieces.append(f"{formatted}, ")

    return addresses, "".join(pieces).rstrip(" ,"), groups


def parse_recipients(
    fields: Dict[str, str],
    mail_domain: str,
    max_recipients: int = 0,
    enforce_limit: bool = True,
) -> RecipientSet:
    """
    Clean up and validate the recipient fields of a message.

    Args:
        fields: Mapping with optional 'to', 'cc' and 'bcc' strings
        mail_domain: Host used for addresses without one
        max_recipients: Recipient ceiling, 0 for none
        enforce_limit: Check the recipient ceiling

    Returns:
        RecipientSet with the flat list and rebuilt headers

    Raises:
        InvalidAddressError, NoRecipientsError, TooManyRecipientsError
    """
    addresses = []
    groups = []
    headers = {}

    for key in RECIPIENT_FIELDS:
        if key not in fields or fields[key] is None:
            continue
        field_addrs, header, field_groups = parse_address_list(fields[key], mail_domain)
        addresses.extend(field_addrs)
        groups.extend(field_groups)
        headers[key] = header

    if not addresses:
        raise NoRecipientsError("You must enter at least one recipient.")

    if enforce_limit and max_recipients and len(addresses) > max_recipients:
        raise TooManyRecipientsError(
            f"You are not allowed to send messages to more than {max_recipients} recipients."
        )

    return RecipientSet(addresses=addresses, headers=headers, groups=groups)


async def expand_addresses(text: str, address_book, source: str) -> List[str]:
    """Search the address book for the first token of text."""
    tokens = explode(text or "")
    if not tokens or address_book is None:
        return []

    matches = []
    for entry in await address_book.search(source, tokens[0]):
        email = entry.get("email") or ""
        if "," in email:
            matches.append(f"{entry.get('name') or email}: {email};")
        elif "@" in email:
            local, _, host = email.partition("@")
            matches.append(str(Address(entry.get("name") or "", local, host)))
    return matches
