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
HTTP front end for the passkey server.

Exposes the four ceremony endpoints under /api/webauthn, serves the demo
client from the public directory, and applies the origin (CORS) policy and
security headers. All policy comes from :class:`~passkey_server.config.Settings`.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from flask import (
    Blueprint,
    Flask,
    current_app,
    jsonify,
    request,
    send_from_directory,
)
from flask_cors import CORS

from .config import Settings
from .errors import VerificationError
from .origins import LOOPBACK_ORIGIN, OriginPolicy
from .server import PasskeyServer
from .storage import ChallengeStore, CredentialStore, MemoryKeyValueStore

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization"]

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self' 'unsafe-inline'; "
        "object-src 'none'; base-uri 'self'; frame-ancestors 'self'"
    ),
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-Frame-Options": "SAMEORIGIN",
    "Cross-Origin-Opener-Policy": "same-origin",
}

api = Blueprint("webauthn", __name__, url_prefix="/api/webauthn")


def build_server(settings: Settings) -> PasskeyServer:
    """Create a PasskeyServer backed by in-memory storage."""
    backend = MemoryKeyValueStore()
    return PasskeyServer(
        rp={"id": settings.rp_id, "name": settings.rp_name},
        origins=OriginPolicy(settings.expected_origins),
        challenges=ChallengeStore(backend, ttl=settings.challenge_ttl),
        credentials=CredentialStore(backend),
        allow_cross_origin=settings.allow_cross_origin,
        timeout=settings.timeout,
    )


def create_app(
    settings: Settings | None = None, server: PasskeyServer | None = None
) -> Flask:
    """Application factory.

    :param settings: Server settings, read from the environment if omitted.
    :param server: The PasskeyServer to use, built from settings if omitted.
    """
    settings = settings or Settings.from_env()
    public_dir = os.path.abspath(settings.public_dir)
    app = Flask(__name__, static_folder=public_dir, static_url_path="")
    app.config["PASSKEY_SETTINGS"] = settings
    server = server or build_server(settings)
    app.extensions["passkey_server"] = server

    # Clients allowed to complete a ceremony may always call the API.
    cors_policy = server.origins.union(
        OriginPolicy(settings.allow_origins, allow_loopback=settings.allow_loopback)
    )
    app.extensions["passkey_cors_policy"] = cors_policy
    cors_origins: list[Any] = sorted(cors_policy.origins)
    if cors_policy.allow_loopback:
        cors_origins.append(LOOPBACK_ORIGIN)
    CORS(
        app,
        origins=cors_origins,
        methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
        supports_credentials=False,
        max_age=86400,
    )

    app.before_request(_reject_disallowed_origin)
    app.after_request(_add_security_headers)
    app.register_blueprint(api)

    @app.get("/")
    def index():
        return send_from_directory(public_dir, "index.html")

    @app.get("/healthz")
    def healthz():
        return jsonify(ok=True)

    logger.debug(f"Application created, CORS policy: {cors_policy}")
    return app


def _reject_disallowed_origin():
    # Requests without an Origin header (same-origin navigation, curl) pass.
    origin = request.headers.get("Origin")
    if origin is None:
        return None
    if origin in current_app.extensions["passkey_cors_policy"]:
        return None
    logger.warning(f"CORS blocked: {origin} ({request.method} {request.path})")
    return jsonify(ok=False), 403


def _add_security_headers(response):
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def _server() -> PasskeyServer:
    return current_app.extensions["passkey_server"]


def _body() -> Mapping[str, Any]:
    try:
        body = request.get_json(silent=True)
    except RecursionError:
        logger.warning(f"Rejected deeply nested JSON body ({request.path})")
        return {}
    return body if isinstance(body, Mapping) else {}


def _user_id(body: Mapping[str, Any]) -> str | None:
    user_id = body.get("userId")
    if isinstance(user_id, bool) or not isinstance(user_id, (str, int)):
        return None
    user_id = str(user_id)
    return user_id or None


def _failure(status: int):
    return jsonify(ok=False), status


@api.post("/registration/options")
def registration_options():
    body = _body()
    user_id = _user_id(body)
    username = body.get("username")
    display_name = body.get("displayName")
    if user_id is None or not isinstance(username, str) or not username:
        return _failure(400)
    if not isinstance(display_name, str):
        display_name = None

    options = _server().register_begin(user_id, username, display_name)
    return jsonify(dict(options))


@api.post("/registration/verify")
def registration_verify():
    body = _body()
    user_id = _user_id(body)
    if user_id is None:
        return _failure(400)

    response = body.get("attestationResponse", body.get("attResp"))
    try:
        _server().register_complete(user_id, response)
    except VerificationError as e:
        logger.warning(f"Registration failed for {user_id!r}: {e.reason}: {e}")
        return _failure(400)
    return jsonify(ok=True)


@api.post("/authentication/options")
def authentication_options():
    user_id = _user_id(_body())
    if user_id is None:
        return _failure(400)

    options = _server().authenticate_begin(user_id)
    return jsonify(dict(options))


@api.post("/authentication/verify")
def authentication_verify():
    body = _body()
    user_id = _user_id(body)
    if user_id is None:
        return _failure(401)

    response = body.get("assertionResponse", body.get("assertionResp"))
    try:
        _server().authenticate_complete(user_id, response)
    except VerificationError as e:
        logger.warning(f"Authentication failed for {user_id!r}: {e.reason}: {e}")
        return _failure(401)
    return jsonify(ok=True, userId=user_id)
