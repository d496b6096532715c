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

import logging
import os
import struct
from json import JSONDecodeError
from typing import Any, Iterable, Mapping

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import constant_time

from .cose import CoseKey
from .errors import (
    ChallengeMismatch,
    CredentialOwnershipMismatch,
    MalformedInput,
    OriginNotAllowed,
    RPIDMismatch,
    SignatureInvalid,
    UnknownCredential,
    UnsupportedAlgorithm,
    UserPresenceRequired,
    UserVerificationRequired,
    VerificationError,
)
from .origins import OriginPolicy
from .storage import (
    CeremonyKind,
    ChallengeStore,
    Credential,
    CredentialStore,
    MemoryKeyValueStore,
)
from .webauthn import (
    AttestationConveyancePreference,
    AuthenticationResponse,
    AuthenticatorData,
    AuthenticatorSelectionCriteria,
    CollectedClientData,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRequestOptions,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    RegistrationResponse,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

logger = logging.getLogger(__name__)

CHALLENGE_LENGTH = 32
DEFAULT_TIMEOUT = 60000

_DECODE_ERRORS = (
    ValueError,
    TypeError,
    AttributeError,
    KeyError,
    IndexError,
    struct.error,
    JSONDecodeError,
    RecursionError,
)


def _validate_challenge(challenge: bytes | None) -> bytes:
    if challenge is None:
        challenge = os.urandom(CHALLENGE_LENGTH)
    else:
        if not isinstance(challenge, bytes):
            raise TypeError("Custom challenge must be of type 'bytes'.")
        if len(challenge) < 16:
            raise ValueError("Custom challenge length must be >= 16.")
    return challenge


def _parse(cls, data: Any):
    if not isinstance(data, (Mapping, cls)):
        raise MalformedInput(f"Expected {cls.__name__}, got {type(data).__name__}")
    try:
        return cls.from_dict(data)
    except VerificationError:
        raise
    except _DECODE_ERRORS as e:
        raise MalformedInput(f"Unable to parse {cls.__name__}: {e}") from e


class PasskeyServer:
    """WebAuthn relying party server.

    Runs the registration and authentication ceremonies, keeping challenges
    and credentials in the given stores. Verification failures are raised as
    subclasses of :class:`VerificationError`.

    :param rp: Relying party data as `PublicKeyCredentialRpEntity` instance.
    :param origins: Origins accepted in the client data of a ceremony.
    :param challenges: (optional) Store for outstanding challenges.
    :param credentials: (optional) Store for registered credentials.
    :param allow_cross_origin: (optional) Accept ceremonies performed in a
        cross-origin iframe.
    :param timeout: (optional) Ceremony timeout hint for the client, in ms.
    """

    def __init__(
        self,
        rp: PublicKeyCredentialRpEntity | Mapping[str, Any],
        origins: OriginPolicy | Iterable[str],
        challenges: ChallengeStore | None = None,
        credentials: CredentialStore | None = None,
        allow_cross_origin: bool = False,
        timeout: int | None = DEFAULT_TIMEOUT,
    ):
        self.rp = PublicKeyCredentialRpEntity.from_dict(rp)
        if not self.rp.id:
            raise ValueError("RP ID must be set.")
        self.origins = origins if isinstance(origins, OriginPolicy) else OriginPolicy(origins)
        if challenges is None or credentials is None:
            backend = MemoryKeyValueStore()
            challenges = challenges or ChallengeStore(backend)
            credentials = credentials or CredentialStore(backend)
        self.challenges = challenges
        self.credentials = credentials
        self.allow_cross_origin = allow_cross_origin
        self.timeout = timeout
        self.allowed_algorithms = [
            PublicKeyCredentialParameters(
                type=PublicKeyCredentialType.PUBLIC_KEY, alg=alg
            )
            for alg in CoseKey.supported_algorithms()
        ]
        logger.debug(f"PasskeyServer initialized for RP: {self.rp}, {self.origins}")

    def register_begin(
        self,
        user_id: str,
        username: str,
        display_name: str | None = None,
        challenge: bytes | None = None,
    ) -> PublicKeyCredentialCreationOptions:
        """Start a registration ceremony for a user.

        A fresh challenge is stored for the user, replacing any outstanding
        registration challenge.

        :param user_id: The opaque identifier of the user.
        :param username: The user name shown by the authenticator.
        :param display_name: Optional display name, defaults to the user name.
        :param challenge: A custom challenge or None to use OS-specific random
            bytes.
        :return: Options to pass to navigator.credentials.create().
        """
        challenge = _validate_challenge(challenge)
        existing = self.credentials.list_credentials(user_id)
        self.challenges.put(user_id, CeremonyKind.REGISTRATION, challenge)
        logger.debug(
            f"Starting new registration for {user_id!r}, existing credentials: "
            + ", ".join(c.credential_id.hex() for c in existing)
        )

        return PublicKeyCredentialCreationOptions(
            rp=self.rp,
            user=PublicKeyCredentialUserEntity(
                id=user_id.encode("utf8"),
                name=username,
                display_name=display_name or username,
            ),
            challenge=challenge,
            pub_key_cred_params=self.allowed_algorithms,
            timeout=self.timeout,
            exclude_credentials=[c.to_descriptor() for c in existing],
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.REQUIRED,
            ),
            attestation=AttestationConveyancePreference.NONE,
            extensions={"credProps": True},
        )

    def register_complete(
        self, user_id: str, response: RegistrationResponse | Mapping[str, Any]
    ) -> Credential:
        """Verify the registration response received from the client, and store
        the new credential.

        :param user_id: The user the registration was started for.
        :param response: The registration response from the client.
        :return: The stored credential.
        """
        challenge = self.challenges.take_and_invalidate(
            user_id, CeremonyKind.REGISTRATION
        )
        if challenge is None:
            raise ChallengeMismatch("No outstanding registration challenge.")

        registration = _parse(RegistrationResponse, response)
        client_data = registration.response.client_data
        attestation_object = registration.response.attestation_object

        self._verify_client_data(client_data, CollectedClientData.TYPE.CREATE, challenge)
        auth_data = attestation_object.auth_data
        self._verify_auth_data(auth_data)

        credential_data = auth_data.credential_data
        if credential_data is None:
            raise MalformedInput("Attested credential data missing.")
        if credential_data.credential_id != registration.raw_id:
            raise MalformedInput("Credential ID does not match rawId.")
        if not credential_data.public_key.supported:
            raise UnsupportedAlgorithm(
                f"Unsupported COSE algorithm: {credential_data.public_key.get(3)}"
            )

        # Attestation statements are not verified, as attestation is "none".
        credential = Credential(
            credential_id=credential_data.credential_id,
            user_id=user_id,
            public_key=credential_data.public_key,
            sign_count=auth_data.counter,
            transports=tuple(registration.response.transports or ()),
            aaguid=bytes(credential_data.aaguid),
            backup_eligible=auth_data.is_backup_eligible(),
            backed_up=auth_data.is_backed_up(),
        )
        self.credentials.add_credential(user_id, credential)
        logger.info(
            f"New credential registered for {user_id!r}: "
            f"{credential.credential_id.hex()} (AAGUID {credential_data.aaguid})"
        )
        return credential

    def authenticate_begin(
        self, user_id: str, challenge: bytes | None = None
    ) -> PublicKeyCredentialRequestOptions:
        """Start an authentication ceremony for a user.

        The user's registered credentials are listed in allowCredentials. The
        list is empty for unknown users, which lets the client fall back to a
        discoverable credential.

        :param user_id: The opaque identifier of the user.
        :param challenge: A custom challenge or None to use OS-specific random
            bytes.
        :return: Options to pass to navigator.credentials.get().
        """
        challenge = _validate_challenge(challenge)
        existing = self.credentials.list_credentials(user_id)
        self.challenges.put(user_id, CeremonyKind.AUTHENTICATION, challenge)
        if existing:
            logger.debug(
                f"Starting new authentication for {user_id!r}, for credentials: "
                + ", ".join(c.credential_id.hex() for c in existing)
            )
        else:
            logger.debug(f"Starting new authentication for {user_id!r} without credentials")

        return PublicKeyCredentialRequestOptions(
            challenge=challenge,
            timeout=self.timeout,
            rp_id=self.rp.id,
            allow_credentials=[c.to_descriptor() for c in existing],
            user_verification=UserVerificationRequirement.REQUIRED,
        )

    def authenticate_complete(
        self, user_id: str, response: AuthenticationResponse | Mapping[str, Any]
    ) -> Credential:
        """Verify the assertion received from the client.

        :param user_id: The user the authentication was started for.
        :param response: The authentication response from the client.
        :return: The authenticated credential, with its updated sign count.
        """
        challenge = self.challenges.take_and_invalidate(
            user_id, CeremonyKind.AUTHENTICATION
        )
        if challenge is None:
            raise ChallengeMismatch("No outstanding authentication challenge.")

        authentication = _parse(AuthenticationResponse, response)
        credential_id = authentication.raw_id
        client_data = authentication.response.client_data
        auth_data = authentication.response.authenticator_data
        signature = authentication.response.signature

        # The credential determines the owner, not the user ID in the request.
        credential = self.credentials.find_credential(credential_id)
        if credential is None:
            raise UnknownCredential("Unknown credential ID: " + credential_id.hex())
        if credential.user_id != user_id:
            raise CredentialOwnershipMismatch(
                f"Credential {credential_id.hex()} is not owned by {user_id!r}."
            )
        user_handle = authentication.response.user_handle
        if user_handle and user_handle != credential.user_id.encode("utf8"):
            raise CredentialOwnershipMismatch("User handle does not match owner.")

        self._verify_client_data(client_data, CollectedClientData.TYPE.GET, challenge)
        self._verify_auth_data(auth_data)

        try:
            credential.public_key.verify(auth_data + client_data.hash, signature)
        except (InvalidSignature, ValueError):
            raise SignatureInvalid("Invalid signature.")

        credential = self.credentials.update_sign_count(credential_id, auth_data.counter)
        logger.info(f"Credential authenticated for {user_id!r}: {credential_id.hex()}")
        return credential

    def _verify_client_data(
        self,
        client_data: CollectedClientData,
        expected_type: CollectedClientData.TYPE,
        challenge: bytes,
    ) -> None:
        if client_data.type != expected_type:
            raise MalformedInput("Incorrect type in CollectedClientData.")
        if not constant_time.bytes_eq(challenge, client_data.challenge):
            raise ChallengeMismatch("Wrong challenge in response.")
        if client_data.origin not in self.origins:
            raise OriginNotAllowed(
                f"Invalid origin in CollectedClientData: {client_data.origin}"
            )
        cross_origin = client_data.cross_origin or (
            client_data.top_origin is not None
            and client_data.top_origin != client_data.origin
        )
        if cross_origin and not self.allow_cross_origin:
            raise OriginNotAllowed(
                f"Cross-origin ceremony not allowed, top origin: "
                f"{client_data.top_origin}"
            )

    def _verify_auth_data(self, auth_data: AuthenticatorData) -> None:
        if not constant_time.bytes_eq(self.rp.id_hash or b"", auth_data.rp_id_hash):
            raise RPIDMismatch("Wrong RP ID hash in response.")
        if not auth_data.is_user_present():
            raise UserPresenceRequired("User Present flag not set.")
        if not auth_data.is_user_verified():
            raise UserVerificationRequired(
                "User verification required, but User Verified flag not set."
            )
