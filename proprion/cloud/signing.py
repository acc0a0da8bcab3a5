#!/usr/bin/env python3
# CUI // SP-CTI
"""Request Signers — per-request authorization for provider IAM APIs.

ABC + 2 implementations:
  - StaticKeySigner: Scaleway, secret key sent as X-Auth-Token on every call.
  - HmacRequestSigner: Exoscale EXO2-HMAC-SHA256, time-boxed signature over
    method, path and body.

The HMAC signature is valid for 600 seconds after signing. That window bounds
replay only; it is unrelated to the HTTP request timeout.
"""

import base64
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict

from proprion.errors import SigningError

logger = logging.getLogger("proprion.cloud.signing")

SIGNATURE_TTL_SECONDS = 600
EXOSCALE_SIGNATURE_SCHEME = "EXO2-HMAC-SHA256"


class RequestSigner(ABC):
    """Abstract base class for request authorization."""

    @property
    @abstractmethod
    def header_name(self) -> str:
        """Return the HTTP header that carries the credential."""

    @abstractmethod
    def sign(self, method: str, path: str, body: str = "") -> str:
        """Return the credential value for one outbound request."""

    def headers(self, method: str, path: str, body: str = "") -> Dict[str, str]:
        """Build the header set for one outbound JSON request."""
        return {
            self.header_name: self.sign(method, path, body),
            "Content-Type": "application/json",
        }


class StaticKeySigner(RequestSigner):
    """Static secret key, identical on every request."""

    def __init__(self, secret_key: str):
        self._secret_key = secret_key

    @property
    def header_name(self) -> str:
        return "X-Auth-Token"

    def sign(self, method: str, path: str, body: str = "") -> str:
        return self._secret_key


class HmacRequestSigner(RequestSigner):
    """EXO2-HMAC-SHA256 signer.

    The signed message is five newline-joined fields:

        "{METHOD} {path}"
        request body (empty if none)
        query parameters (always empty here)
        signed headers (always empty here)
        expiry as Unix seconds

    Args:
        api_key: Public API key, sent in clear as ``credential=``.
        api_secret: HMAC key. Never leaves the process.
        clock: Returns the current Unix time; injectable for tests.
        ttl: Seconds the signature stays valid.
    """

    def __init__(self, api_key: str, api_secret: str,
                 clock: Callable[[], float] = time.time,
                 ttl: int = SIGNATURE_TTL_SECONDS):
        self._api_key = api_key
        self._api_secret = api_secret
        self._clock = clock
        self._ttl = ttl

    @property
    def header_name(self) -> str:
        return "Authorization"

    @staticmethod
    def canonical_message(method: str, path: str, body: str, expires: int) -> str:
        """Build the message the signature covers."""
        return "\n".join([f"{method} {path}", body or "", "", "", str(expires)])

    def _digest(self, message: str) -> bytes:
        if not isinstance(self._api_secret, str) or not self._api_secret:
            raise SigningError("API secret is empty or not a string",
                               service="exoscale")
        try:
            mac = hmac.new(self._api_secret.encode("utf-8"),
                           message.encode("utf-8"), hashlib.sha256)
        except (TypeError, ValueError) as exc:
            raise SigningError(f"Cannot initialize HMAC: {exc}",
                               service="exoscale") from exc
        return mac.digest()

    def sign(self, method: str, path: str, body: str = "") -> str:
        expires = int(self._clock()) + self._ttl
        message = self.canonical_message(method.upper(), path, body, expires)
        signature = base64.b64encode(self._digest(message)).decode("ascii")
        logger.debug("Signed %s %s (expires=%d)", method.upper(), path, expires)
        return (f"{EXOSCALE_SIGNATURE_SCHEME} credential={self._api_key},"
                f"expires={expires},signature={signature}")
