"""Manager-key signing for ledger writes."""

from __future__ import annotations

import base64
import hashlib
import time
from collections.abc import Callable, Generator

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .exceptions import LedgerAuthError

_PSS = padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)


def _load_manager_key(private_key_pem: str) -> RSAPrivateKey:
    # Keys pasted into .env usually carry literal \n sequences
    pem = private_key_pem.replace("\\n", "\n").encode()
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as e:
        raise LedgerAuthError(f"Unreadable ledger manager key: {e}") from e
    if not isinstance(key, RSAPrivateKey):
        raise LedgerAuthError("Ledger manager key must be an RSA key")
    return key


class LedgerManagerAuth(httpx.Auth):
    """httpx auth flow signing each write with the ledger manager's RSA key.

    The signed message is ``timestamp + METHOD + path + sha256(body)``, so a
    settlement batch cannot be replayed with different outcomes.
    """

    requires_request_body = True

    def __init__(
        self,
        api_key: str,
        private_key_pem: str,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self._key = _load_manager_key(private_key_pem)
        self._clock = clock

    def signing_message(self, timestamp_ms: int, method: str, path: str, body: bytes) -> bytes:
        digest = hashlib.sha256(body).hexdigest()
        return f"{timestamp_ms}{method.upper()}{path}{digest}".encode()

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        timestamp_ms = int(self._clock() * 1000)
        body = request.content
        message = self.signing_message(timestamp_ms, request.method, request.url.path, body)
        signature = self._key.sign(message, _PSS, hashes.SHA256())

        request.headers["LEDGER-ACCESS-KEY"] = self.api_key
        request.headers["LEDGER-ACCESS-TIMESTAMP"] = str(timestamp_ms)
        request.headers["LEDGER-ACCESS-SIGNATURE"] = base64.b64encode(signature).decode()
        request.headers["LEDGER-CONTENT-SHA256"] = hashlib.sha256(body).hexdigest()
        yield request
