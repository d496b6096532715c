# Copyright (c) 2018 Yubico AB
# All rights reserved.
#
#   Redistribution and use in source and binary forms, with or
#   without modification, are permitted provided that the following
#   conditions are met:
#
#    1. Redistributions of source code must retain the above copyright
#       notice, this list of conditions and the following disclaimer.
#    2. Redistributions in binary form must reproduce the above
#       copyright notice, this list of conditions and the following
#       disclaimer in the documentation and/or other materials provided
#       with the distribution.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS
# "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT
# LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS
# FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE
# COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT,
# INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING,
# BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES;
# LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
# CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT
# LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN
# ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

"""
Minimal CBOR implementation supporting the subset of functionality and types
used by WebAuthn attestation objects, authenticator data and COSE keys.

Decoding is strict: indefinite lengths, tags, floats and truncated input are
rejected with a ValueError, so untrusted client data never yields a partially
parsed value.
"""

from __future__ import annotations

import struct
from typing import Any, Callable, Mapping, Sequence, Tuple, Type, Union

CborType = Union[int, bool, str, bytes, None, Sequence[Any], Mapping[Any, Any]]

MAX_DEPTH = 16


def dump_int(data: int, mt: int = 0) -> bytes:
    if data < 0:
        mt = 1
        data = -1 - data

    mt = mt << 5
    if data <= 23:
        args: Any = (">B", mt | data)
    elif data <= 0xFF:
        args = (">BB", mt | 24, data)
    elif data <= 0xFFFF:
        args = (">BH", mt | 25, data)
    elif data <= 0xFFFFFFFF:
        args = (">BI", mt | 26, data)
    else:
        args = (">BQ", mt | 27, data)
    return struct.pack(*args)


def dump_bool(data: bool) -> bytes:
    return b"\xf5" if data else b"\xf4"


def dump_none(data: None) -> bytes:
    return b"\xf6"


def dump_list(data: Sequence[CborType]) -> bytes:
    return dump_int(len(data), mt=4) + b"".join([encode(x) for x in data])


def _sort_keys(entry):
    key = entry[0]
    return key[0], len(key), key


def dump_dict(data: Mapping[CborType, CborType]) -> bytes:
    items = [(encode(k), encode(v)) for k, v in data.items()]
    items.sort(key=_sort_keys)
    return dump_int(len(items), mt=5) + b"".join([k + v for (k, v) in items])


def dump_bytes(data: bytes) -> bytes:
    return dump_int(len(data), mt=2) + data


def dump_text(data: str) -> bytes:
    data_bytes = data.encode("utf8")
    return dump_int(len(data_bytes), mt=3) + data_bytes


_SERIALIZERS: Sequence[Tuple[Type, Callable[[Any], bytes]]] = [
    (bool, dump_bool),
    (type(None), dump_none),
    (int, dump_int),
    (str, dump_text),
    (bytes, dump_bytes),
    (Mapping, dump_dict),
    (Sequence, dump_list),
]


def encode(data: CborType) -> bytes:
    """Encodes data in canonical CTAP2 form (shortest ints, sorted map keys)."""
    for k, v in _SERIALIZERS:
        if isinstance(data, k):
            return v(data)
    raise ValueError(f"Unsupported value: {data!r}")


def _split(data: bytes, length: int) -> Tuple[bytes, bytes]:
    if length > len(data):
        raise ValueError(
            "Truncated CBOR data (need: %d, had: %d)." % (length, len(data))
        )
    return data[:length], data[length:]


def load_int(ai: int, data: bytes, depth: int = 0) -> Tuple[int, bytes]:
    if ai < 24:
        return ai, data
    size = {24: 1, 25: 2, 26: 4, 27: 8}.get(ai)
    if size is None:
        raise ValueError("Invalid additional information")
    raw, rest = _split(data, size)
    return int.from_bytes(raw, "big"), rest


def load_nint(ai: int, data: bytes, depth: int = 0) -> Tuple[int, bytes]:
    val, rest = load_int(ai, data)
    return -1 - val, rest


def load_simple(ai: int, data: bytes, depth: int = 0) -> Tuple[Any, bytes]:
    if ai == 20:
        return False, data
    if ai == 21:
        return True, data
    if ai == 22:
        return None, data
    raise ValueError(f"Unsupported simple value: {ai}")


def load_bytes(ai: int, data: bytes, depth: int = 0) -> Tuple[bytes, bytes]:
    length, data = load_int(ai, data)
    return _split(data, length)


def load_text(ai: int, data: bytes, depth: int = 0) -> Tuple[str, bytes]:
    enc, rest = load_bytes(ai, data)
    return enc.decode("utf8"), rest


def load_array(ai: int, data: bytes, depth: int = 0) -> Tuple[Sequence[Any], bytes]:
    length, data = load_int(ai, data)
    values = []
    for _ in range(length):
        val, data = decode_from(data, depth + 1)
        values.append(val)
    return values, data


def load_map(ai: int, data: bytes, depth: int = 0) -> Tuple[Mapping[Any, Any], bytes]:
    length, data = load_int(ai, data)
    values = {}
    for _ in range(length):
        k, data = decode_from(data, depth + 1)
        if isinstance(k, (list, dict)):
            raise ValueError("Unsupported map key type")
        if k in values:
            raise ValueError(f"Duplicate map key: {k!r}")
        v, data = decode_from(data, depth + 1)
        values[k] = v
    return values, data


_DESERIALIZERS = {
    0: load_int,
    1: load_nint,
    2: load_bytes,
    3: load_text,
    4: load_array,
    5: load_map,
    7: load_simple,
}


def decode_from(data: bytes, depth: int = 0) -> Tuple[Any, bytes]:
    """Decodes a single CBOR value, returning it along with any remaining data."""
    if depth > MAX_DEPTH:
        raise ValueError("CBOR data nested too deeply")
    if not data:
        raise ValueError("Truncated CBOR data (need: 1, had: 0).")
    fb = data[0]
    loader = _DESERIALIZERS.get(fb >> 5)
    if loader is None:
        raise ValueError(f"Unsupported CBOR major type: {fb >> 5}")
    return loader(fb & 0b11111, data[1:], depth)


def decode(data: bytes) -> CborType:
    """Decodes exactly one CBOR value, rejecting trailing data."""
    value, rest = decode_from(data)
    if rest != b"":
        raise ValueError("Extraneous data")
    return value
