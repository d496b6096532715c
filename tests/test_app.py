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

import os
import tempfile
import unittest

from passkey_server.app import build_server, create_app
from passkey_server.config import Settings
from passkey_server.utils import websafe_encode

from .utils import ORIGIN, RP_ID, SoftAuthenticator


class TestApp(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        with open(os.path.join(tmp.name, "index.html"), "w") as f:
            f.write("<html>passkey demo</html>")

        self.settings = Settings(
            rp_id=RP_ID,
            rp_name="Example RP",
            expected_origins=(ORIGIN,),
            allow_origins=("https://example.com",),
            allow_loopback=True,
            public_dir=tmp.name,
        )
        self.app = create_app(self.settings)
        self.client = self.app.test_client()
        self.authenticator = SoftAuthenticator()

    def _post(self, path, body, **kwargs):
        return self.client.post("/api/webauthn/" + path, json=body, **kwargs)

    def _register(self, user_id="alice", key="attestationResponse"):
        resp = self._post(
            "registration/options", {"userId": user_id, "username": user_id}
        )
        self.assertEqual(resp.status_code, 200)
        challenge = resp.get_json()["challenge"]
        return self._post(
            "registration/verify",
            {"userId": user_id, key: self.authenticator.register(challenge)},
        )

    def _authenticate(self, user_id="alice", key="assertionResponse", **kwargs):
        resp = self._post("authentication/options", {"userId": user_id})
        self.assertEqual(resp.status_code, 200)
        challenge = resp.get_json()["challenge"]
        return self._post(
            "authentication/verify",
            {"userId": user_id, key: self.authenticator.authenticate(challenge, **kwargs)},
        )

    def test_healthz(self):
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"ok": True})

    def test_index(self):
        resp = self.client.get("/")
        self.assertEqual(resp.status_code, 200)
        self.assertIn(b"passkey demo", resp.data)

    def test_security_headers(self):
        resp = self.client.get("/healthz")
        self.assertEqual(resp.headers["X-Content-Type-Options"], "nosniff")
        self.assertEqual(resp.headers["X-Frame-Options"], "SAMEORIGIN")
        self.assertIn("default-src 'self'", resp.headers["Content-Security-Policy"])
        self.assertIn("Referrer-Policy", resp.headers)

    def test_registration_options(self):
        resp = self._post(
            "registration/options",
            {"userId": "alice", "username": "alice@example.com", "displayName": "Alice"},
        )
        self.assertEqual(resp.status_code, 200)
        options = resp.get_json()
        self.assertEqual(options["rp"], {"name": "Example RP", "id": RP_ID})
        self.assertEqual(options["user"]["displayName"], "Alice")
        self.assertEqual(options["authenticatorSelection"]["userVerification"], "required")
        self.assertEqual(options["attestation"], "none")

    def test_registration_options_missing_fields(self):
        for body in ({}, {"userId": "alice"}, {"username": "alice"}, {"userId": True, "username": "a"}):
            resp = self._post("registration/options", body)
            self.assertEqual(resp.status_code, 400)
            self.assertEqual(resp.get_json(), {"ok": False})

    def test_non_json_body(self):
        resp = self.client.post(
            "/api/webauthn/registration/options", data="userId=alice"
        )
        self.assertEqual(resp.status_code, 400)

    def test_register_and_authenticate(self):
        resp = self._register()
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"ok": True})

        resp = self._post("authentication/options", {"userId": "alice"})
        options = resp.get_json()
        self.assertEqual(len(options["allowCredentials"]), 1)
        self.assertEqual(options["rpId"], RP_ID)

        resp = self._authenticate()
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"ok": True, "userId": "alice"})

    def test_short_body_keys(self):
        self.assertEqual(self._register(key="attResp").status_code, 200)
        resp = self._authenticate(key="assertionResp")
        self.assertEqual(resp.get_json(), {"ok": True, "userId": "alice"})

    def test_numeric_user_id(self):
        resp = self._post("registration/options", {"userId": 42, "username": "u42"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["user"]["id"], "NDI")

    def test_registration_failure(self):
        with self.assertLogs("passkey_server.app", "WARNING") as logs:
            resp = self._post(
                "registration/verify",
                {
                    "userId": "alice",
                    "attestationResponse": self.authenticator.register(b"x" * 32),
                },
            )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"ok": False})
        self.assertIn("challenge_mismatch", logs.output[0])

    def test_registration_missing_response(self):
        self._post("registration/options", {"userId": "alice", "username": "alice"})
        resp = self._post("registration/verify", {"userId": "alice"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"ok": False})

    def test_authentication_failure(self):
        self._register()
        with self.assertLogs("passkey_server.app", "WARNING") as logs:
            resp = self._authenticate(origin="https://evil.example")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json(), {"ok": False})
        self.assertIn("origin_not_allowed", logs.output[0])

    def test_authentication_spoofed_user(self):
        self._register()
        resp = self._post("authentication/options", {"userId": "bob"})
        challenge = resp.get_json()["challenge"]
        resp = self._post(
            "authentication/verify",
            {
                "userId": "bob",
                "assertionResponse": self.authenticator.authenticate(challenge),
            },
        )
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json(), {"ok": False})

    def test_deeply_nested_client_data(self):
        resp = self._post(
            "registration/options", {"userId": "alice", "username": "alice"}
        )
        response = self.authenticator.register(resp.get_json()["challenge"])
        response["response"]["clientDataJSON"] = websafe_encode(
            b"[" * 100000 + b"]" * 100000
        )
        resp = self._post(
            "registration/verify", {"userId": "alice", "attestationResponse": response}
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"ok": False})

    def test_deeply_nested_body(self):
        body = '{"userId":' + "[" * 100000 + "]" * 100000 + "}"
        for path, status in (
            ("registration/options", 400),
            ("registration/verify", 400),
            ("authentication/options", 400),
            ("authentication/verify", 401),
        ):
            resp = self.client.post(
                "/api/webauthn/" + path, data=body, content_type="application/json"
            )
            self.assertEqual(resp.status_code, status)
            self.assertEqual(resp.get_json(), {"ok": False})

    def test_authentication_missing_user(self):
        resp = self._post("authentication/verify", {})
        self.assertEqual(resp.status_code, 401)
        resp = self._post("authentication/options", {})
        self.assertEqual(resp.status_code, 400)


class TestCors(unittest.TestCase):
    def setUp(self):
        self.app = create_app(
            Settings(
                expected_origins=(ORIGIN,),
                allow_origins=("https://example.com",),
                allow_loopback=True,
            )
        )
        self.client = self.app.test_client()

    def test_no_origin(self):
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertNotIn("Access-Control-Allow-Origin", resp.headers)

    def test_allowed_origin(self):
        resp = self.client.get("/healthz", headers={"Origin": "https://example.com"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.headers["Access-Control-Allow-Origin"], "https://example.com"
        )

    def test_expected_origin(self):
        resp = self.client.get("/healthz", headers={"Origin": ORIGIN})
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], ORIGIN)

    def test_loopback_origin(self):
        resp = self.client.get(
            "/healthz", headers={"Origin": "http://127.0.0.1:8080"}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.headers["Access-Control-Allow-Origin"], "http://127.0.0.1:8080"
        )

    def test_disallowed_origin(self):
        resp = self.client.post(
            "/api/webauthn/registration/options",
            json={"userId": "alice", "username": "alice"},
            headers={"Origin": "https://evil.example"},
        )
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json(), {"ok": False})
        self.assertNotIn("Access-Control-Allow-Origin", resp.headers)

    def test_preflight(self):
        resp = self.client.options(
            "/api/webauthn/registration/options",
            headers={
                "Origin": "https://example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.headers["Access-Control-Allow-Origin"], "https://example.com"
        )
        self.assertIn("POST", resp.headers["Access-Control-Allow-Methods"])
        self.assertEqual(resp.headers["Access-Control-Max-Age"], "86400")

    def test_server_origins_allowed(self):
        server = build_server(
            Settings(expected_origins=("https://custom.example",))
        )
        app = create_app(
            Settings(
                expected_origins=("https://example.com",),
                allow_origins=(),
                allow_loopback=False,
            ),
            server=server,
        )
        resp = app.test_client().get(
            "/healthz", headers={"Origin": "https://custom.example"}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.headers["Access-Control-Allow-Origin"], "https://custom.example"
        )

    def test_loopback_disabled(self):
        app = create_app(
            Settings(
                expected_origins=("https://example.com",),
                allow_origins=(),
                allow_loopback=False,
            )
        )
        resp = app.test_client().get(
            "/healthz", headers={"Origin": "http://localhost:5173"}
        )
        self.assertEqual(resp.status_code, 403)
