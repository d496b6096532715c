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

"""Various utility functions.

This module contains the encoding helpers and the JSON data class base used
throughout the rest of the project.
"""

from __future__ import annotations

import struct
from base64 import urlsafe_b64decode, urlsafe_b64encode
from binascii import Error as _Base64Error
from dataclasses import Field, fields
from enum import Enum
from io import BytesIO
from types import UnionType
from typing import (
    Any,
    Mapping,
    Optional,
    Sequence,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from cryptography.hazmat.primitives import hashes

__all__ = [
    "websafe_encode",
    "websafe_decode",
    "sha256",
    "bytes2int",
    "int2bytes",
]


def sha256(data: bytes) -> bytes:
    """Produces a SHA256 hash of the input.

    :param data: The input data to hash.
    :return: The resulting hash.
    """
    h = hashes.Hash(hashes.SHA256())
    h.update(data)
    return h.finalize()


def bytes2int(value: bytes) -> int:
    """Parses an arbitrarily sized integer from a byte string.

    :param value: A byte string encoding a big endian unsigned integer.
    :return: The parsed int.
    """
    return int.from_bytes(value, "big")


def int2bytes(value: int, minlen: int = -1) -> bytes:
    """Encodes an int as a byte string.

    :param value: The integer value to encode.
    :param minlen: An optional minimum length for the resulting byte string.
    :return: The value encoded as a big endian byte string.
    """
    length = max(1, (value.bit_length() + 7) // 8, minlen)
    return value.to_bytes(length, "big")


def websafe_decode(data: Union[str, bytes]) -> bytes:
    """Decodes a websafe-base64 encoded string.
    See: "Base 64 Encoding with URL and Filename Safe Alphabet" from Section 5
    in RFC4648 without padding.

    Padded input is accepted, as some clients do not strip it.

    :param data: The input to decode.
    :return: The decoded bytes.
    """
    if isinstance(data, str):
        data = data.encode("ascii")
    data = data.rstrip(b"=")
    if len(data) % 4 == 1:
        raise ValueError("Invalid base64url length")
    try:
        return urlsafe_b64decode(data + b"=" * (-len(data) % 4))
    except _Base64Error as e:
        raise ValueError(f"Invalid base64url data: {e}") from e


def websafe_encode(data: bytes) -> str:
    """Encodes a byte string into websafe-base64 encoding.

    :param data: The input to encode.
    :return: The encoded string.
    """
    return urlsafe_b64encode(data).replace(b"=", b"").decode("ascii")


class ByteBuffer(BytesIO):
    """BytesIO-like object with the ability to unpack values."""

    def unpack(self, fmt: str):
        """Reads and unpacks a value from the buffer.

        :param fmt: A struct format string yielding a single value.
        :return: The unpacked value.
        """
        s = struct.Struct(fmt)
        return s.unpack(self.read(s.size))[0]

    def read(self, size: Optional[int] = -1) -> bytes:
        """Like BytesIO.read(), but checks the number of bytes read and raises an error
        if fewer bytes were read than expected.
        """
        data = super().read(size)
        if size is not None and size > 0 and len(data) != size:
            raise ValueError(
                "Not enough data to read (need: %d, had: %d)." % (size, len(data))
            )
        return data


def _camel_case(name: str) -> str:
    parts = name.split("_")
    return parts[0] + "".join(p.title() for p in parts[1:])


class _JsonDataObject(Mapping[str, Any]):
    """A data class with members also accessible as a JSON-serializable Mapping.

    Field names are exposed in camelCase (or the ``name`` given in the field
    metadata), bytes values are exposed as websafe-base64 strings and fields
    set to None are omitted. Subclasses must be dataclasses.

    Deserializing is done with ``from_dict``, which accepts the same JSON form.
    """

    @classmethod
    def _field_key(cls, f: Field) -> str:
        return f.metadata.get("name") or _camel_case(f.name)

    def _field_map(self) -> Mapping[str, Field]:
        return {self._field_key(f): f for f in fields(self)}  # type: ignore

    def __iter__(self):
        return (
            k for k, f in self._field_map().items() if getattr(self, f.name) is not None
        )

    def __len__(self):
        return len(list(iter(self)))

    def __getitem__(self, key):
        f = self._field_map()[key]
        value = getattr(self, f.name)
        if value is None:
            raise KeyError(key)
        return _to_json(value)

    @classmethod
    def _parse_value(cls, t, value):
        if get_origin(t) in (Union, UnionType):  # Optional, get the type
            t = next(a for a in get_args(t) if a is not type(None))

        if isinstance(t, type):
            # bytes are encoded as websafe_b64 strings
            if issubclass(t, bytes):
                if isinstance(value, str):
                    value = websafe_decode(value)
                if not isinstance(value, bytes):
                    raise TypeError(f"Expected bytes for {t.__name__}")
                return value if type(value) is t else t(value)
            if issubclass(t, _JsonDataObject):
                return t.from_dict(value)
            if issubclass(t, Enum):
                return t(value)
            if not isinstance(value, t):
                raise TypeError(f"Expected {t.__name__}, got {type(value).__name__}")
            return value

        # Handle list of values
        origin = get_origin(t)
        if isinstance(origin, type) and issubclass(origin, Sequence):
            if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
                raise TypeError("Expected a list")
            item_t = get_args(t)[0]
            return [cls._parse_value(item_t, v) for v in value]
        if isinstance(origin, type) and issubclass(origin, Mapping):
            if not isinstance(value, Mapping):
                raise TypeError("Expected an object")
            return dict(value)
        return value

    @classmethod
    def from_dict(cls, data):
        """Parse an instance from its JSON-compatible dict form."""
        if data is None:
            return None
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise TypeError(
                f"{cls.__name__}.from_dict called with non-Mapping data of type "
                f"{type(data)}"
            )

        kwargs = {}
        hints = get_type_hints(cls)
        for f in fields(cls):  # type: ignore
            if not f.init:
                continue
            value = data.get(cls._field_key(f))
            if value is None:
                continue
            kwargs[f.name] = cls._parse_value(hints[f.name], value)
        return cls(**kwargs)


def _to_json(value):
    if isinstance(value, bytes):
        return websafe_encode(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {k: _to_json(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, str):
        return [_to_json(v) for v in value]
    return value
