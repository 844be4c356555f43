"""STOMP 1.2 frame encoding and decoding.

A frame is a command line, header lines, a blank line and a body terminated
by a NUL byte. Over WebSocket every text message carries zero or more frames;
a message holding only end-of-line characters is a heart-beat.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from roomchat.errors import MalformedFrame

NULL = "\x00"

# CONNECT and CONNECTED headers are never escaped (STOMP 1.2, "Value Encoding")
_UNESCAPED_COMMANDS = {"CONNECT", "CONNECTED"}

_ESCAPES = [("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c")]
_UNESCAPES = {"\\\\": "\\", "\\r": "\r", "\\n": "\n", "\\c": ":"}


@dataclass
class StompFrame:
    """A single STOMP frame."""
    command: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        if value[i] == "\\":
            pair = value[i:i + 2]
            if pair not in _UNESCAPES:
                raise MalformedFrame(f"Invalid header escape sequence {pair!r}")
            out.append(_UNESCAPES[pair])
            i += 2
        else:
            out.append(value[i])
            i += 1
    return "".join(out)


def encode_frame(frame: StompFrame) -> str:
    """Serialize a frame to its wire text, NUL terminator included."""
    escape = frame.command not in _UNESCAPED_COMMANDS
    lines = [frame.command]
    headers = dict(frame.headers)
    if frame.body and "content-length" not in headers:
        headers["content-length"] = str(len(frame.body.encode("utf-8")))
    for name, value in headers.items():
        if escape:
            name, value = _escape(name), _escape(str(value))
        lines.append(f"{name}:{value}")
    return "\n".join(lines) + "\n\n" + frame.body + NULL


def decode_frames(data: str) -> List[StompFrame]:
    """Parse every frame contained in one WebSocket text message.

    Raises:
        MalformedFrame: if the data is not a sequence of complete frames
    """
    frames = []
    pos = 0
    while True:
        # Skip heart-beats and the optional EOLs that may follow a NUL
        while pos < len(data) and data[pos] in "\r\n":
            pos += 1
        if pos >= len(data):
            return frames
        frame, pos = _decode_one(data, pos)
        frames.append(frame)


def _decode_one(data: str, pos: int):
    head_end = data.find("\n\n", pos)
    crlf_end = data.find("\r\n\r\n", pos)
    if crlf_end != -1 and (head_end == -1 or crlf_end < head_end):
        head, body_start = data[pos:crlf_end], crlf_end + 4
    elif head_end != -1:
        head, body_start = data[pos:head_end], head_end + 2
    else:
        raise MalformedFrame("Frame has no header terminator")

    lines = [line.rstrip("\r") for line in head.split("\n")]
    command = lines[0]
    if not command or not command.isupper():
        raise MalformedFrame(f"Invalid STOMP command {command!r}")

    escape = command not in _UNESCAPED_COMMANDS
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep:
            raise MalformedFrame(f"Invalid header line {line!r}")
        if escape:
            name, value = _unescape(name), _unescape(value)
        # Repeated headers: only the first occurrence counts
        headers.setdefault(name, value)

    length = headers.get("content-length")
    if length is not None:
        try:
            size = int(length)
        except ValueError:
            raise MalformedFrame(f"Invalid content-length {length!r}")
        raw = data[body_start:].encode("utf-8")
        if len(raw) < size + 1 or raw[size:size + 1] != b"\x00":
            raise MalformedFrame("Frame body shorter than content-length")
        body = raw[:size].decode("utf-8")
        end = body_start + len(body) + 1
    else:
        nul = data.find(NULL, body_start)
        if nul == -1:
            raise MalformedFrame("Frame is missing its NUL terminator")
        body = data[body_start:nul]
        end = nul + 1

    return StompFrame(command=command, headers=headers, body=body), end
