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

from __future__ import annotations

import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from passkey_server.cose import ES256, RS256, CoseKey
from passkey_server.utils import sha256, websafe_encode
from passkey_server.webauthn import (
    Aaguid,
    AttestationObject,
    AttestedCredentialData,
    AuthenticatorData,
    CollectedClientData,
)

RP_ID = "localhost"
ORIGIN = "http://localhost:3000"

FLAGS = AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.UV


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def challenge_of(options) -> str:
    return dict(options)["challenge"]


class SoftAuthenticator:
    """Software authenticator producing browser-shaped WebAuthn responses.

    Note: do not use in production, keys are held in memory and attestation is
    always "none".
    """

    def __init__(
        self,
        alg: int = ES256.ALGORITHM,
        credential_id: bytes | None = None,
        rp_id: str = RP_ID,
        origin: str = ORIGIN,
        counter: int = 0,
    ):
        if alg == ES256.ALGORITHM:
            self.priv_key = ec.generate_private_key(ec.SECP256R1())
        elif alg == RS256.ALGORITHM:
            self.priv_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        else:
            raise ValueError(f"Unsupported algorithm: {alg}")
        self.alg = alg
        self.public_key = CoseKey.from_cryptography_key(self.priv_key.public_key())
        self.credential_id = credential_id or os.urandom(32)
        self.rp_id = rp_id
        self.origin = origin
        self.counter = counter

    def sign(self, message: bytes) -> bytes:
        if self.alg == ES256.ALGORITHM:
            return self.priv_key.sign(message, ec.ECDSA(hashes.SHA256()))
        return self.priv_key.sign(message, padding.PKCS1v15(), hashes.SHA256())

    def _client_data(self, type, challenge, origin, **kwargs) -> CollectedClientData:
        return CollectedClientData.create(
            type, challenge, origin or self.origin, **kwargs
        )

    def register(
        self,
        challenge: bytes | str,
        *,
        origin: str | None = None,
        rp_id: str | None = None,
        flags: int = FLAGS,
        public_key=None,
        type: str = CollectedClientData.TYPE.CREATE,
        transports=("internal",),
        **client_data_kwargs,
    ) -> dict:
        """Create a RegistrationResponse JSON object for a challenge."""
        client_data = self._client_data(type, challenge, origin, **client_data_kwargs)
        auth_data = AuthenticatorData.create(
            sha256((rp_id or self.rp_id).encode("utf8")),
            flags | AuthenticatorData.FLAG.AT,
            self.counter,
            AttestedCredentialData.create(
                Aaguid.NONE, self.credential_id, public_key or self.public_key
            ),
        )
        attestation_object = AttestationObject.create("none", auth_data, {})
        cred_id = websafe_encode(self.credential_id)
        return {
            "id": cred_id,
            "rawId": cred_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(client_data),
                "attestationObject": websafe_encode(attestation_object),
                "transports": list(transports),
            },
            "clientExtensionResults": {"credProps": {"rk": True}},
            "authenticatorAttachment": "platform",
        }

    def authenticate(
        self,
        challenge: bytes | str,
        *,
        counter: int | None = None,
        origin: str | None = None,
        rp_id: str | None = None,
        flags: int = FLAGS,
        user_handle: bytes | None = None,
        type: str = CollectedClientData.TYPE.GET,
        **client_data_kwargs,
    ) -> dict:
        """Create an AuthenticationResponse JSON object for a challenge.

        The signature counter is incremented, unless a counter is given.
        """
        if counter is None:
            if self.counter:
                self.counter += 1
        else:
            self.counter = counter
        client_data = self._client_data(type, challenge, origin, **client_data_kwargs)
        auth_data = AuthenticatorData.create(
            sha256((rp_id or self.rp_id).encode("utf8")), flags, self.counter
        )
        signature = self.sign(auth_data + client_data.hash)
        cred_id = websafe_encode(self.credential_id)
        return {
            "id": cred_id,
            "rawId": cred_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(client_data),
                "authenticatorData": websafe_encode(auth_data),
                "signature": websafe_encode(signature),
                "userHandle": websafe_encode(user_handle) if user_handle else None,
            },
            "clientExtensionResults": {},
        }
