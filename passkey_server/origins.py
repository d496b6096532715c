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
Origin checks, applied at two points: to the ``Origin`` header of incoming
HTTP requests (CORS), and to the origin the browser recorded in the client
data of a ceremony.

Origins are compared exactly, after normalizing scheme and host case and
dropping default ports, so "https://Example.com:443" matches
"https://example.com".
"""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import urlsplit

LOOPBACK_ORIGIN = re.compile(
    r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$", re.IGNORECASE
)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_origin(origin: str) -> str | None:
    """Return the canonical scheme://host[:port] form of an origin.

    :return: The normalized origin, or None if the value is not a valid
        http(s) origin (a path, query or credentials disqualify it).
    """
    try:
        url = urlsplit(origin.strip())
        port = url.port
    except ValueError:
        return None
    if url.scheme not in _DEFAULT_PORTS or not url.hostname:
        return None
    if url.path not in ("", "/") or url.query or url.fragment or url.username:
        return None
    host = url.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS[url.scheme]:
        return f"{url.scheme}://{host}"
    return f"{url.scheme}://{host}:{port}"


class OriginPolicy:
    """A set of allowed origins, optionally extended with loopback origins.

    :param origins: Origins to allow.
    :param allow_loopback: Also allow http(s)://localhost and 127.0.0.1 on any
        port, for local development.
    """

    def __init__(self, origins: Iterable[str], allow_loopback: bool = False):
        normalized = {normalize_origin(o) for o in origins}
        normalized.discard(None)
        self.origins: frozenset[str] = frozenset(normalized)  # type: ignore
        self.allow_loopback = allow_loopback

    def __contains__(self, origin: object) -> bool:
        return isinstance(origin, str) and self.is_allowed(origin)

    def __repr__(self):
        return (
            f"OriginPolicy({sorted(self.origins)!r}, "
            f"allow_loopback={self.allow_loopback})"
        )

    def is_allowed(self, origin: str) -> bool:
        """Checks if an origin is allowed by the policy.

        :param origin: The origin to check.
        :return: True if the origin is allowed, False if not.
        """
        normalized = normalize_origin(origin)
        if normalized is None:
            return False
        if normalized in self.origins:
            return True
        return self.allow_loopback and bool(LOOPBACK_ORIGIN.match(normalized))

    def union(self, other: OriginPolicy) -> OriginPolicy:
        return OriginPolicy(
            self.origins | other.origins, self.allow_loopback or other.allow_loopback
        )
