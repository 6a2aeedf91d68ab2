from __future__ import annotations

import json

import cbor2

CODEC_JSON = "json"
CODEC_CBOR = "cbor"

CODECS = (CODEC_JSON, CODEC_CBOR)


class DecodeError(ValueError):
    pass


def check_codec(name: str) -> str:
    n = str(name).strip().lower()
    if n not in CODECS:
        raise ValueError(f"unknown codec {name!r} (expected one of {', '.join(CODECS)})")
    return n


def codec_label(name: str) -> str:
    return check_codec(name).upper()


def encode(obj, codec: str = CODEC_JSON) -> bytes:
    if check_codec(codec) == CODEC_CBOR:
        return cbor2.dumps(obj)
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode(b: bytes, codec: str = CODEC_JSON):
    codec = check_codec(codec)
    try:
        if codec == CODEC_CBOR:
            return cbor2.loads(b)
        if isinstance(b, (bytes, bytearray)):
            b = bytes(b).decode("utf-8")
        return json.loads(b)
    except (ValueError, TypeError, cbor2.CBORDecodeError) as e:
        raise DecodeError(str(e)) from e
