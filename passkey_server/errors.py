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

"""Errors raised while verifying WebAuthn ceremonies.

Every failure is a :class:`VerificationError` carrying a stable ``reason`` code.
The code is meant for server side logs only, HTTP clients get a generic
failure response.
"""

from __future__ import annotations


class VerificationError(ValueError):
    """Base class for all ceremony verification failures."""

    reason = "verification_failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.reason)


class MalformedInput(VerificationError):
    """The client response could not be decoded (CBOR, base64url, JSON)."""

    reason = "malformed_input"


class ChallengeMismatch(VerificationError):
    """No outstanding challenge, or the response signed a different one."""

    reason = "challenge_mismatch"


class OriginNotAllowed(VerificationError):
    reason = "origin_not_allowed"


class RPIDMismatch(VerificationError):
    reason = "rp_id_mismatch"


class UserPresenceRequired(VerificationError):
    reason = "user_presence_required"


class UserVerificationRequired(VerificationError):
    reason = "user_verification_required"


class UnsupportedAlgorithm(VerificationError):
    reason = "unsupported_algorithm"


class DuplicateCredential(VerificationError):
    reason = "duplicate_credential"


class UnknownCredential(VerificationError):
    reason = "unknown_credential"


class CredentialOwnershipMismatch(VerificationError):
    """The credential exists, but belongs to another user than the one claimed."""

    reason = "credential_ownership_mismatch"


class SignatureInvalid(VerificationError):
    reason = "signature_invalid"


class PossibleCloneDetected(VerificationError):
    """The signature counter did not increase; the authenticator may be cloned."""

    reason = "possible_clone_detected"
