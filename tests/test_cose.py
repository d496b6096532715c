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

import unittest

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from passkey_server.cose import ES256, RS256, CoseKey, UnsupportedKey

_ES256_KEY = {
    1: 2,
    3: -7,
    -1: 1,
    -2: bytes.fromhex("643566c206dd00227005fa5de69320616ca268043a38f08bde2e9dc45a5cafaf"),
    -3: bytes.fromhex("171353b2932434703726aae579fa6542432861fe591e481ea22d63997e1a5290"),
}


class TestCoseKey(unittest.TestCase):
    def test_supported_algorithms(self):
        self.assertEqual(CoseKey.supported_algorithms(), [-7, -257])

    def test_for_alg(self):
        self.assertIs(CoseKey.for_alg(-7), ES256)
        self.assertIs(CoseKey.for_alg(-257), RS256)
        self.assertIs(CoseKey.for_alg(-8), UnsupportedKey)
        self.assertIs(CoseKey.for_alg(-37), UnsupportedKey)

    def test_parse_es256(self):
        key = CoseKey.parse(_ES256_KEY)
        self.assertIsInstance(key, ES256)
        self.assertTrue(key.supported)
        self.assertEqual(key.algorithm, -7)
        self.assertEqual(key, _ES256_KEY)

    def test_parse_unsupported(self):
        key = CoseKey.parse({1: 1, 3: -8, -1: 6, -2: b"\1" * 32})
        self.assertIsInstance(key, UnsupportedKey)
        self.assertFalse(key.supported)

    def test_parse_missing_alg(self):
        with self.assertRaises(ValueError):
            CoseKey.parse({1: 2, -1: 1})
        with self.assertRaises(ValueError):
            CoseKey.parse({1: 2, 3: "ES256"})
        with self.assertRaises(ValueError):
            CoseKey.parse([1, 2, 3])

    def test_parse_es256_invalid(self):
        with self.assertRaises(ValueError):
            CoseKey.parse({**_ES256_KEY, -1: 2})  # P-384
        with self.assertRaises(ValueError):
            CoseKey.parse({**_ES256_KEY, 1: 3})
        with self.assertRaises(ValueError):
            CoseKey.parse({**_ES256_KEY, -2: _ES256_KEY[-2][1:]})
        with self.assertRaises(ValueError):
            # Not a point on P-256
            CoseKey.parse({**_ES256_KEY, -2: b"\0" * 31 + b"\1", -3: b"\0" * 31 + b"\1"})

    def test_parse_rs256_small_modulus(self):
        priv = rsa.generate_private_key(public_exponent=65537, key_size=1024)
        cose = dict(RS256.from_cryptography_key(priv.public_key()))
        with self.assertRaises(ValueError):
            CoseKey.parse(cose)


class TestES256(unittest.TestCase):
    def setUp(self):
        self.priv = ec.generate_private_key(ec.SECP256R1())
        self.key = CoseKey.from_cryptography_key(self.priv.public_key())

    def test_from_cryptography_key(self):
        self.assertIsInstance(self.key, ES256)
        self.assertEqual(self.key[1], 2)
        self.assertEqual(self.key[-1], 1)
        self.assertEqual(len(self.key[-2]), 32)
        self.assertEqual(len(self.key[-3]), 32)
        self.assertEqual(CoseKey.parse(dict(self.key)), self.key)

    def test_verify(self):
        signature = self.priv.sign(b"message", ec.ECDSA(hashes.SHA256()))
        self.key.verify(b"message", signature)

    def test_verify_invalid(self):
        signature = self.priv.sign(b"message", ec.ECDSA(hashes.SHA256()))
        with self.assertRaises(InvalidSignature):
            self.key.verify(b"other message", signature)
        with self.assertRaises(InvalidSignature):
            self.key.verify(b"message", b"INVALID")


class TestRS256(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.priv = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        cls.key = CoseKey.from_cryptography_key(cls.priv.public_key())

    def test_from_cryptography_key(self):
        self.assertIsInstance(self.key, RS256)
        self.assertEqual(self.key[1], 3)
        self.assertEqual(self.key[-2], b"\x01\x00\x01")
        self.assertEqual(CoseKey.parse(dict(self.key)), self.key)

    def test_verify(self):
        signature = self.priv.sign(b"message", padding.PKCS1v15(), hashes.SHA256())
        self.key.verify(b"message", signature)

    def test_verify_invalid(self):
        signature = self.priv.sign(b"message", padding.PKCS1v15(), hashes.SHA256())
        with self.assertRaises(InvalidSignature):
            self.key.verify(b"other message", signature)

    def test_pss_signature_rejected(self):
        signature = self.priv.sign(
            b"message",
            padding.PSS(
                mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH
            ),
            hashes.SHA256(),
        )
        with self.assertRaises(InvalidSignature):
            self.key.verify(b"message", signature)
