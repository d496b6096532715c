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

"""COSE public keys for the signature algorithms accepted by the server.

The set of algorithms is closed: ES256 and RS256, plus :class:`UnsupportedKey`
for any other identifier. Registering an unsupported key is rejected by the
server, so an ``UnsupportedKey`` is never stored.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from .utils import bytes2int, int2bytes


class CoseKey(dict):
    """A COSE formatted public key.

    :param _: The COSE key parameters.
    :cvar ALGORITHM: COSE algorithm identifier.
    """

    ALGORITHM: int = None  # type: ignore
    KEY_TYPE: int = None  # type: ignore

    @property
    def supported(self) -> bool:
        return True

    @property
    def algorithm(self) -> int:
        return self[3]

    def verify(self, message: bytes, signature: bytes) -> None:
        """Validates a digital signature over a given message.

        :param message: The message which was signed.
        :param signature: The signature to check.
        :raises cryptography.exceptions.InvalidSignature: If the signature is
            not valid for the message.
        """
        raise NotImplementedError("Signature verification not supported.")

    def _validate(self) -> None:
        """Check that the key parameters describe a usable public key."""

    @classmethod
    def from_cryptography_key(cls, public_key) -> CoseKey:
        """Converts a PublicKey object from Cryptography into a COSE key.

        :param public_key: Either an EC or RSA public key.
        :return: A CoseKey.
        """
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            return ES256.from_cryptography_key(public_key)
        if isinstance(public_key, rsa.RSAPublicKey):
            return RS256.from_cryptography_key(public_key)
        raise ValueError(f"Unsupported key type: {type(public_key).__name__}")

    @staticmethod
    def for_alg(alg: int) -> type[CoseKey]:
        """Get the CoseKey class corresponding to an algorithm identifier.

        :param alg: The COSE identifier of the algorithm.
        :return: A CoseKey class, UnsupportedKey if the algorithm is unknown.
        """
        return _ALGORITHMS.get(alg, UnsupportedKey)

    @staticmethod
    def parse(cose: Mapping[int, Any]) -> CoseKey:
        """Create a CoseKey from a dict, validating the key parameters.

        :param cose: A decoded COSE key map.
        :return: The CoseKey, or an UnsupportedKey for unknown algorithms.
        :raises ValueError: If the parameters do not form a valid key.
        """
        if not isinstance(cose, Mapping):
            raise ValueError("COSE key must be a map.")
        alg = cose.get(3)
        if not isinstance(alg, int) or isinstance(alg, bool):
            raise ValueError("COSE alg identifier must be provided.")
        key = CoseKey.for_alg(alg)(cose)
        key._validate()
        return key

    @staticmethod
    def supported_algorithms() -> Sequence[int]:
        """Get a list of all supported algorithm identifiers, in preference order."""
        return list(_ALGORITHMS)


class UnsupportedKey(CoseKey):
    """A COSE key with an unsupported algorithm."""

    @property
    def supported(self) -> bool:
        return False


class ES256(CoseKey):
    ALGORITHM = -7
    KEY_TYPE = 2
    CURVE = 1
    _HASH_ALG = hashes.SHA256()

    def _public_key(self) -> ec.EllipticCurvePublicKey:
        return ec.EllipticCurvePublicNumbers(
            bytes2int(self[-2]), bytes2int(self[-3]), ec.SECP256R1()
        ).public_key()

    def _validate(self):
        if self.get(1) != self.KEY_TYPE:
            raise ValueError("ES256 key must have key type EC2")
        if self.get(-1) != self.CURVE:
            raise ValueError("Unsupported elliptic curve")
        for label in (-2, -3):
            coord = self.get(label)
            if not isinstance(coord, bytes) or len(coord) != 32:
                raise ValueError("Invalid EC coordinate length")
        # Raises ValueError if the point is not on the curve
        self._public_key()

    def verify(self, message, signature):
        self._public_key().verify(signature, message, ec.ECDSA(self._HASH_ALG))

    @classmethod
    def from_cryptography_key(cls, public_key):
        assert isinstance(public_key, ec.EllipticCurvePublicKey)  # nosec
        pn = public_key.public_numbers()
        return cls(
            {
                1: cls.KEY_TYPE,
                3: cls.ALGORITHM,
                -1: cls.CURVE,
                -2: int2bytes(pn.x, 32),
                -3: int2bytes(pn.y, 32),
            }
        )


class RS256(CoseKey):
    ALGORITHM = -257
    KEY_TYPE = 3
    MIN_KEY_SIZE = 2048
    _HASH_ALG = hashes.SHA256()

    def _public_key(self) -> rsa.RSAPublicKey:
        return rsa.RSAPublicNumbers(bytes2int(self[-2]), bytes2int(self[-1])).public_key()

    def _validate(self):
        if self.get(1) != self.KEY_TYPE:
            raise ValueError("RS256 key must have key type RSA")
        n, e = self.get(-1), self.get(-2)
        if not isinstance(n, bytes) or not isinstance(e, bytes):
            raise ValueError("RSA modulus and exponent must be byte strings")
        if bytes2int(n).bit_length() < self.MIN_KEY_SIZE:
            raise ValueError("RSA modulus too small")
        self._public_key()

    def verify(self, message, signature):
        self._public_key().verify(
            signature, message, padding.PKCS1v15(), self._HASH_ALG
        )

    @classmethod
    def from_cryptography_key(cls, public_key):
        assert isinstance(public_key, rsa.RSAPublicKey)  # nosec
        pn = public_key.public_numbers()
        return cls(
            {1: cls.KEY_TYPE, 3: cls.ALGORITHM, -1: int2bytes(pn.n), -2: int2bytes(pn.e)}
        )


_ALGORITHMS: Mapping[int, type[CoseKey]] = {
    ES256.ALGORITHM: ES256,
    RS256.ALGORITHM: RS256,
}
