"""
Flowed Text

RFC 3676 format=flowed conversion. A line ending in a space is a soft
break and is joined with the following line of the same quote depth
when reading. ``to_flowed`` and ``to_fixed`` are inverse transforms on
text already in canonical flowed form.
"""

from typing import List, Tuple

MAX_LINE_LENGTH = 78
SIG_SEPARATOR = "-- "


def _split_quote(line: str, fixed: bool = False) -> Tuple[int, str]:
    """Return (quote depth, content) of a line."""
    depth = 0
    i = 0
    while i < len(line) and line[i] == ">":
        depth += 1
        i += 1
        # Fixed text commonly writes "> > quoted".
        if fixed and line[i:i + 2].startswith(" >"):
            i += 1
    content = line[i:]
    if content.startswith(" ") and (depth or not fixed):
        content = content[1:]
    return depth, content


def _is_flowed(content: str) -> bool:
    return content.endswith(" ") and content != SIG_SEPARATOR


def to_fixed(text: str, delsp: bool = False) -> str:
    """
    Unwrap flowed text into fixed lines.

    Args:
        text: format=flowed text
        delsp: The DelSp=yes parameter was set; soft-break spaces are dropped

    Returns:
        Text with one paragraph per line
    """
    lines = text.replace("\r\n", "\n").split("\n")
    output = []
    buffer = None
    buffer_depth = 0

    for line in lines:
        depth, content = _split_quote(line)

        if buffer is not None and depth != buffer_depth:
            output.append((buffer_depth, buffer))
            buffer = None

        if buffer is None:
            buffer = ""
            buffer_depth = depth

        if _is_flowed(content):
            buffer += content[:-1] if delsp else content
        else:
            buffer += content
            output.append((buffer_depth, buffer))
            buffer = None

    if buffer is not None:
        output.append((buffer_depth, buffer))

    return "\n".join(_quote(depth, content) for depth, content in output)


def _quote(depth: int, content: str) -> str:
    if not depth:
        return content
    return ">" * depth + (" " + content if content else "")


def _stuff(depth: int, content: str) -> str:
    if depth:
        return _quote(depth, content)
    if content.startswith(" ") or content.startswith("From ") or content.startswith(">"):
        return " " + content
    return content


def _wrap(content: str, width: int) -> List[str]:
    """Break content after spaces so each piece fits in width."""
    pieces = []
    while len(content) > width:
        cut = content.rfind(" ", 0, width)
        if cut <= 0:
            cut = content.find(" ", width)
        # A bare "-- " piece would read back as a signature separator.
        if content[:cut + 1] == SIG_SEPARATOR:
            cut = content.find(" ", cut + 1)
        if cut == -1:
            break
        pieces.append(content[:cut + 1])
        content = content[cut + 1:]
    pieces.append(content)
    return pieces


def to_flowed(text: str, delsp: bool = False, max_length: int = MAX_LINE_LENGTH) -> str:
    """
    Wrap fixed text into format=flowed lines.

    Args:
        text: Fixed text, one paragraph per line
        delsp: Generate for DelSp=yes (soft breaks carry an extra space)
        max_length: Maximum line length including quote markers

    Returns:
        format=flowed text
    """
    lines = text.replace("\r\n", "\n").split("\n")
    output = []

    for line in lines:
        if line == SIG_SEPARATOR:
            output.append(line)
            continue

        depth, content = _split_quote(line, fixed=True)
        content = content.rstrip()

        prefix_len = depth + 1 if depth else 1
        pieces = _wrap(content, max(max_length - prefix_len, 20))

        for i, piece in enumerate(pieces):
            if delsp and i < len(pieces) - 1:
                piece += " "
            output.append(_stuff(depth, piece))

    return "\n".join(output)
