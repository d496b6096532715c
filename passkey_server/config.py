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

"""Process wide configuration, read from environment variables at startup."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

DEFAULT_ORIGIN = "http://localhost:3000"
DEFAULT_FLUTTER_ORIGIN = "http://localhost:5173"
DEFAULT_ALLOW_ORIGINS = "https://example.com,https://stg.example.com"


def _split_list(raw_value: Optional[str]) -> list[str]:
    """Split a comma or newline separated list, dropping empty entries."""
    if not raw_value:
        return []
    return [part.strip() for part in re.split(r"[,\n]+", raw_value) if part.strip()]


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw_value = environ.get(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() not in {"", "0", "false", "off", "no"}


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw_value = environ.get(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw_value!r}")


@dataclass(frozen=True)
class Settings:
    """Server settings.

    :ivar expected_origins: Origins accepted in the client data of a ceremony.
    :ivar allow_origins: Additional origins allowed to call the API (CORS).
    :ivar allow_loopback: Allow localhost/127.0.0.1 origins to call the API.
    :ivar challenge_ttl: Lifetime of a ceremony challenge, in seconds.
    :ivar timeout: Ceremony timeout hint for the client, in milliseconds.
    """

    rp_id: str = "localhost"
    rp_name: str = "My App"
    host: str = "127.0.0.1"
    port: int = 3000
    expected_origins: Sequence[str] = (DEFAULT_ORIGIN, DEFAULT_FLUTTER_ORIGIN)
    allow_origins: Sequence[str] = field(
        default_factory=lambda: tuple(_split_list(DEFAULT_ALLOW_ORIGINS))
    )
    allow_loopback: bool = True
    allow_cross_origin: bool = False
    challenge_ttl: int = 300
    timeout: int = 60000
    public_dir: str = "public"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables.

        :param environ: The environment to read, defaults to os.environ.
        """
        if environ is None:
            environ = os.environ

        expected = [
            environ.get("ORIGIN") or DEFAULT_ORIGIN,
            environ.get("FLUTTER_ORIGIN") or DEFAULT_FLUTTER_ORIGIN,
        ] + _split_list(environ.get("EXPECTED_ORIGINS"))

        return cls(
            rp_id=environ.get("RP_ID") or "localhost",
            rp_name=environ.get("RP_NAME") or "My App",
            host=environ.get("HOST") or "127.0.0.1",
            port=_env_int(environ, "PORT", 3000),
            expected_origins=tuple(dict.fromkeys(expected)),
            allow_origins=tuple(
                _split_list(environ.get("ALLOW_ORIGINS", DEFAULT_ALLOW_ORIGINS))
            ),
            allow_loopback=_env_flag(environ, "ALLOW_LOOPBACK", True),
            allow_cross_origin=_env_flag(environ, "ALLOW_CROSS_ORIGIN", False),
            challenge_ttl=_env_int(environ, "CHALLENGE_TTL", 300),
            timeout=_env_int(environ, "CEREMONY_TIMEOUT", 60000),
            public_dir=environ.get("PUBLIC_DIR") or "public",
            log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        )
