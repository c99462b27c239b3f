"""Authentication module (JWT access tokens).

Access tokens are HS256 JWTs carrying the user id. They are accepted from
the ``accessToken`` cookie, an ``Authorization: Bearer`` header, or (for
WebSocket handshakes) the ``token`` query parameter.

Services:
    - TokenVerifier: extracts and verifies credentials, resolves identities.
"""
