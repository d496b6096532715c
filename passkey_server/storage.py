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

"""Challenge and credential storage.

Ceremony logic only talks to :class:`ChallengeStore` and
:class:`CredentialStore`. Both sit on top of a :class:`KeyValueStore`, which
provides the primitive operations (including an atomic take and an atomic
insert-if-absent) and is injected so that a durable, lock coordinated backend
can replace the in-memory default.
"""

from __future__ import annotations

import abc
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum, unique
from typing import Any, Callable, ContextManager, Iterator, Sequence

from .cose import CoseKey
from .errors import DuplicateCredential, PossibleCloneDetected, UnknownCredential
from .webauthn import PublicKeyCredentialDescriptor, PublicKeyCredentialType

logger = logging.getLogger(__name__)

DEFAULT_CHALLENGE_TTL = 300.0
DEFAULT_PURGE_INTERVAL = 60.0

Clock = Callable[[], float]


class KeyValueStore(abc.ABC):
    """Storage backend capability used by the challenge and credential stores."""

    @abc.abstractmethod
    def get(self, key: str) -> Any:
        """Return the value stored under key, or None if absent or expired."""

    @abc.abstractmethod
    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value, replacing any existing one.

        :param ttl: Optional lifetime in seconds, after which the entry reads
            as absent.
        """

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """Remove a value. Removing a missing key is not an error."""

    @abc.abstractmethod
    def take(self, key: str) -> Any:
        """Atomically return and remove a value, None if absent or expired."""

    @abc.abstractmethod
    def add(self, key: str, value: Any) -> bool:
        """Atomically store a value only if the key is absent.

        :return: True if the value was stored, False if the key was taken.
        """

    @abc.abstractmethod
    def atomic(self) -> ContextManager[None]:
        """Context manager serializing a read-modify-write sequence of calls."""


class MemoryKeyValueStore(KeyValueStore):
    """In-process KeyValueStore guarded by a single re-entrant lock.

    Expired entries are dropped when read, and swept from the whole store by
    ``put`` at most once per ``purge_interval`` seconds.

    :param clock: Monotonic time source, in seconds. Replaceable in tests.
    :param purge_interval: Minimum time between two sweeps, in seconds.
    """

    def __init__(
        self,
        clock: Clock = time.monotonic,
        purge_interval: float = DEFAULT_PURGE_INTERVAL,
    ):
        self._clock = clock
        self._lock = threading.RLock()
        self._data: dict[str, tuple[Any, float | None]] = {}
        self.purge_interval = purge_interval
        self._next_purge = clock() + purge_interval

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._data.get(key)
        if entry is not None and entry[1] is not None and entry[1] <= self._clock():
            del self._data[key]
            return None
        return entry

    def get(self, key):
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def put(self, key, value, ttl=None):
        now = self._clock()
        expires = now + ttl if ttl is not None else None
        with self._lock:
            if now >= self._next_purge:
                self._purge(now)
            self._data[key] = (value, expires)

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)

    def take(self, key):
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            del self._data[key]
            return entry[0]

    def add(self, key, value):
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, None)
            return True

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            yield

    def _purge(self, now: float) -> int:
        expired = [
            k for k, (_, exp) in self._data.items() if exp is not None and exp <= now
        ]
        for k in expired:
            del self._data[k]
        self._next_purge = now + self.purge_interval
        if expired:
            logger.debug(f"Purged {len(expired)} expired entries")
        return len(expired)

    def purge_expired(self) -> int:
        """Drop all expired entries, returning how many were removed."""
        with self._lock:
            return self._purge(self._clock())

    def __len__(self):
        with self._lock:
            return len(self._data)


@unique
class CeremonyKind(str, Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class ChallengeStore:
    """Single use, time bounded challenges keyed by user and ceremony kind.

    Each user has at most one outstanding challenge per kind; issuing a new one
    replaces the previous.
    """

    def __init__(self, backend: KeyValueStore, ttl: float = DEFAULT_CHALLENGE_TTL):
        self._backend = backend
        self.ttl = ttl

    @staticmethod
    def _key(user_id: str, kind: CeremonyKind) -> str:
        return f"challenge:{CeremonyKind(kind).value}:{user_id}"

    def put(
        self,
        user_id: str,
        kind: CeremonyKind,
        challenge: bytes,
        ttl: float | None = None,
    ) -> None:
        self._backend.put(
            self._key(user_id, kind), challenge, self.ttl if ttl is None else ttl
        )

    def take_and_invalidate(self, user_id: str, kind: CeremonyKind) -> bytes | None:
        """Return the outstanding challenge and invalidate it.

        :return: The challenge, or None if there is none or it has expired.
        """
        return self._backend.take(self._key(user_id, kind))


@dataclass(frozen=True)
class Credential:
    """A registered public key credential, owned by exactly one user.

    :ivar sign_count: Last seen signature counter, 0 if the authenticator
        does not implement one.
    :ivar transports: Advisory transport hints reported by the client.
    """

    credential_id: bytes
    user_id: str
    public_key: CoseKey
    sign_count: int = 0
    transports: Sequence[str] = field(default_factory=tuple)
    aaguid: bytes = b"\0" * 16
    backup_eligible: bool = False
    backed_up: bool = False

    def to_descriptor(self) -> PublicKeyCredentialDescriptor:
        """Converts the credential to a PublicKeyCredentialDescriptor.

        :return: A descriptor of the credential, for use in excludeCredentials
            or allowCredentials.
        """
        return PublicKeyCredentialDescriptor(
            type=PublicKeyCredentialType.PUBLIC_KEY,
            id=self.credential_id,
            transports=list(self.transports) or None,
        )


def counter_regressed(stored: int, received: int) -> bool:
    """Check a signature counter against the stored value.

    Authenticators without a counter always report 0; as long as both values
    are 0 the check passes. Otherwise the counter must strictly increase.
    """
    return (stored > 0 or received > 0) and received <= stored


class CredentialStore:
    """Credentials indexed globally by id, and per user in registration order."""

    def __init__(self, backend: KeyValueStore):
        self._backend = backend

    @staticmethod
    def _cred_key(credential_id: bytes) -> str:
        return f"credential:{credential_id.hex()}"

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"user-credentials:{user_id}"

    def add_credential(self, user_id: str, credential: Credential) -> None:
        """Store a new credential for a user.

        :raises DuplicateCredential: If the credential ID is already registered,
            to this or any other user.
        """
        if credential.user_id != user_id:
            raise ValueError("Credential is owned by a different user")
        with self._backend.atomic():
            if not self._backend.add(self._cred_key(credential.credential_id), credential):
                raise DuplicateCredential(
                    "Credential ID already registered: " + credential.credential_id.hex()
                )
            user_key = self._user_key(user_id)
            ids = list(self._backend.get(user_key) or [])
            ids.append(credential.credential_id)
            self._backend.put(user_key, ids)

    def list_credentials(self, user_id: str) -> list[Credential]:
        with self._backend.atomic():
            ids = self._backend.get(self._user_key(user_id)) or []
            return [self._backend.get(self._cred_key(i)) for i in ids]

    def find_credential(self, credential_id: bytes) -> Credential | None:
        return self._backend.get(self._cred_key(credential_id))

    def update_sign_count(self, credential_id: bytes, new_count: int) -> Credential:
        """Atomically advance the signature counter of a credential.

        :return: The updated credential.
        :raises UnknownCredential: If no such credential exists.
        :raises PossibleCloneDetected: If the new counter does not exceed the
            stored one.
        """
        key = self._cred_key(credential_id)
        with self._backend.atomic():
            credential = self._backend.get(key)
            if credential is None:
                raise UnknownCredential("Unknown credential: " + credential_id.hex())
            if counter_regressed(credential.sign_count, new_count):
                raise PossibleCloneDetected(
                    f"Signature counter did not increase ({credential.sign_count} -> "
                    f"{new_count}) for credential {credential_id.hex()}"
                )
            updated = replace(credential, sign_count=new_count)
            self._backend.put(key, updated)
        logger.debug(f"Sign count for {credential_id.hex()} is now {new_count}")
        return updated
