"""Conversion between RPC message strings and raw bytes."""

from __future__ import annotations

import base64
import binascii

from boardlink.core.errors import InvalidEncodingError

_TEXT_ENCODINGS = {
    "utf8": "utf-8",
    "utf-8": "utf-8",
    "ascii": "ascii",
    "latin1": "latin-1",
    "binary": "latin-1",
}


def decode_message(message: str, encoding: str | None) -> bytes:
    """Turn an RPC `message` in `encoding` into the bytes it represents."""
    name = (encoding or "utf8").strip().lower()
    try:
        if name == "base64":
            return base64.b64decode(message)
        if name == "hex":
            return bytes.fromhex(message)
        if name in _TEXT_ENCODINGS:
            return message.encode(_TEXT_ENCODINGS[name])
    except (binascii.Error, ValueError) as exc:
        raise InvalidEncodingError(f"Message is not valid {name}: {exc}") from exc
    raise InvalidEncodingError(f"Unsupported message encoding '{encoding}'")


def encode_message(data: bytes) -> dict[str, str]:
    return {"encoding": "base64", "message": base64.b64encode(data).decode("ascii")}
