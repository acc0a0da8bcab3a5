#!/usr/bin/env python3
# CUI // SP-CTI
"""IAM Provider — provider-agnostic application identities and API keys.

ABC + 2 implementations:
  - ScalewayIAMProvider: application + policy + API key, X-Auth-Token auth.
  - ExoscaleIAMProvider: role with inline policy + API key, EXO2-HMAC-SHA256.

The orchestrator drives both through the same interface. The differences it
needs to know about are exposed as properties (requires_scoped_policy,
propagation_delay, uses_bucket_policy, cascades_api_key_deletion).

Usage:
    from proprion.cloud.iam_provider import ExoscaleIAMProvider

    provider = ExoscaleIAMProvider(config)
    role = provider.create_principal("proprion-svc", "svc", "data", "apps/svc/")
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from proprion.cloud.policy import build_exoscale_role_policy, build_scaleway_policy_rules
from proprion.cloud.signing import HmacRequestSigner, RequestSigner, StaticKeySigner
from proprion.errors import ApiError, ProtocolError, TransportError

logger = logging.getLogger("proprion.cloud.iam")

DEFAULT_TIMEOUT = 30


@dataclass
class Principal:
    """Application identity: a Scaleway application or an Exoscale role."""

    id: str
    name: Optional[str] = None
    description: Optional[str] = None


@dataclass
class ScopedPolicy:
    id: str
    name: str
    principal_id: str


@dataclass
class ApiKey:
    """Access key bound to a principal.

    ``secret`` is only populated on the creation response; the providers never
    return it again.
    """

    key: str
    name: Optional[str] = None
    principal_id: Optional[str] = None
    secret: Optional[str] = field(default=None, repr=False)


@dataclass
class OperationReference:
    id: Optional[str] = None
    link: Optional[str] = None
    command: Optional[str] = None


@dataclass
class AsyncOperation:
    """Intermediate response of an Exoscale creation call."""

    id: Optional[str]
    state: Optional[str]
    reference: Optional[OperationReference] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "AsyncOperation":
        ref = data.get("reference")
        reference = None
        if isinstance(ref, dict):
            reference = OperationReference(
                id=ref.get("id"), link=ref.get("link"), command=ref.get("command"),
            )
        return cls(id=data.get("id"), state=data.get("state"), reference=reference)

    def resolve_reference_id(self) -> str:
        """Return the id of the created resource, or raise ProtocolError."""
        if self.reference is None:
            raise ProtocolError(
                f"Operation {self.id} ({self.state}) has no reference", service="exoscale")
        if not self.reference.id:
            raise ProtocolError(
                f"Operation {self.id} ({self.state}) reference has no id", service="exoscale")
        return self.reference.id


class IAMProvider(ABC):
    """Abstract base class for application identity management.

    Subclasses set ``_base_url`` and ``_signer``; ``_request`` handles
    signing, transport errors, status checks and JSON decoding.
    """

    _base_url = ""

    def __init__(self, signer: RequestSigner,
                 session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self._signer = signer
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._timeout = timeout

    def close(self) -> None:
        """Close the HTTP session if this provider created it."""
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "IAMProvider":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- provider traits ------------------------------------------------

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider identifier."""

    @property
    def requires_scoped_policy(self) -> bool:
        """Whether a separate policy must be created after the principal."""
        return False

    @property
    def propagation_delay(self) -> float:
        """Seconds to wait after creating the principal, before the API key."""
        return 0

    @property
    def uses_bucket_policy(self) -> bool:
        """Whether the prefix restriction lives in the bucket policy."""
        return False

    @property
    def cascades_api_key_deletion(self) -> bool:
        """Whether deleting a principal also deletes its API keys upstream."""
        return True

    # -- naming ---------------------------------------------------------

    def app_prefix(self, app_name: str) -> str:
        return f"apps/{app_name}"

    def principal_name(self, app_name: str) -> str:
        return app_name

    def api_key_label(self, app_name: str) -> str:
        return f"API key for {app_name}"

    def managed_app_name(self, principal: Principal) -> Optional[str]:
        """Application name for a listed principal, or None if not ours."""
        return principal.name

    # -- operations -----------------------------------------------------

    @abstractmethod
    def create_principal(self, name: str, description: str,
                         bucket: str, prefix: str) -> Principal:
        """Create the application identity."""

    def create_scoped_policy(self, principal_id: str, name: str) -> Optional[ScopedPolicy]:
        """Attach a scoped policy to a principal. No-op where policies are inline."""
        return None

    @abstractmethod
    def create_api_key(self, principal_id: str, label: str) -> ApiKey:
        """Create an API key; the returned key always carries its secret."""

    @abstractmethod
    def list_principals(self) -> List[Principal]:
        """List application identities."""

    @abstractmethod
    def list_api_keys(self) -> List[ApiKey]:
        """List API keys (without secrets)."""

    @abstractmethod
    def delete_principal(self, principal_id: str) -> None:
        """Delete an application identity."""

    @abstractmethod
    def delete_api_key(self, key: str) -> None:
        """Delete an API key."""

    # -- HTTP plumbing --------------------------------------------------

    def _request(self, method: str, path: str, payload: Optional[Dict] = None,
                 params: Optional[Dict] = None) -> Optional[Dict]:
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        headers = self._signer.headers(method, path, body)
        url = f"{self._base_url}{path}"
        logger.debug("%s %s %s", self.provider_name, method, path)
        try:
            response = self._session.request(
                method, url, data=body.encode("utf-8") if body else None, params=params,
                headers=headers, timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}",
                                 service=self.provider_name) from exc

        if not 200 <= response.status_code < 300:
            raise ApiError(response.status_code, _error_message(response.text),
                           service=self.provider_name)

        if not response.text:
            return None
        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(f"{method} {path} returned invalid JSON",
                                service=self.provider_name) from exc
        if not isinstance(data, dict):
            raise ProtocolError(f"{method} {path} returned {type(data).__name__}, expected object",
                                service=self.provider_name)
        return data

    def _require(self, data: Optional[Dict], key: str, context: str) -> Any:
        value = (data or {}).get(key)
        if value is None or value == "":
            raise ProtocolError(f"{context} response missing '{key}'",
                                service=self.provider_name)
        return value

    def _items(self, data: Optional[Dict], key: str, context: str) -> List[Dict]:
        items = (data or {}).get(key, [])
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise ProtocolError(f"{context} response has malformed '{key}'",
                                service=self.provider_name)
        return items


def _error_message(body: str) -> str:
    """Best-effort ``message`` field from an error body, else the body itself."""
    try:
        data = json.loads(body)
    except ValueError:
        return body
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return body


# ============================================================
# Scaleway IAM
# ============================================================
SCALEWAY_IAM_API_BASE = "https://api.scaleway.com/iam/v1alpha1"


class ScalewayIAMProvider(IAMProvider):
    """Scaleway IAM: applications, policies and API keys.

    Prefix scoping is enforced by the bucket policy, so the IAM policy only
    grants object permission sets within the configured project.
    """

    _base_url = SCALEWAY_IAM_API_BASE

    def __init__(self, config, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        super().__init__(StaticKeySigner(config.secret_key), session=session, timeout=timeout)
        self._organization_id = config.organization_id
        self._project_id = config.project_id

    @property
    def provider_name(self) -> str:
        return "scaleway"

    @property
    def requires_scoped_policy(self) -> bool:
        return True

    @property
    def uses_bucket_policy(self) -> bool:
        return True

    def _principal(self, data: Dict, context: str) -> Principal:
        return Principal(id=self._require(data, "id", context), name=data.get("name"),
                         description=data.get("description"))

    def create_principal(self, name: str, description: str,
                         bucket: str = "", prefix: str = "") -> Principal:
        data = self._request("POST", "/applications", {
            "name": name,
            "description": description,
            "organization_id": self._organization_id,
        })
        principal = self._principal(data, "create application")
        logger.info("Scaleway application created: %s", principal.id)
        return principal

    def create_scoped_policy(self, principal_id: str, name: str) -> ScopedPolicy:
        data = self._request("POST", "/policies", {
            "name": name,
            "organization_id": self._organization_id,
            "application_id": principal_id,
            "rules": build_scaleway_policy_rules(self._project_id),
        })
        policy_id = self._require(data, "id", "create policy")
        logger.info("Scaleway policy %s attached to %s", policy_id, principal_id)
        return ScopedPolicy(id=policy_id, name=data.get("name", name), principal_id=principal_id)

    def create_api_key(self, principal_id: str, label: str,
                       default_project_id: Optional[str] = None) -> ApiKey:
        payload = {"application_id": principal_id, "description": label}
        project = default_project_id or self._project_id
        if project:
            payload["default_project_id"] = project
        data = self._request("POST", "/api-keys", payload)
        access_key = self._require(data, "access_key", "create API key")
        secret = self._require(data, "secret_key", "create API key")
        logger.info("Scaleway API key created: %s", access_key)
        return ApiKey(key=access_key, name=data.get("description"),
                      principal_id=data.get("application_id", principal_id), secret=secret)

    def list_principals(self) -> List[Principal]:
        data = self._request("GET", "/applications",
                             params={"organization_id": self._organization_id})
        return [self._principal(a, "list applications")
                for a in self._items(data, "applications", "list applications")]

    def list_api_keys(self, application_id: Optional[str] = None) -> List[ApiKey]:
        params = {"application_id": application_id} if application_id else None
        data = self._request("GET", "/api-keys", params=params)
        return [ApiKey(key=self._require(k, "access_key", "list API keys"),
                       name=k.get("description"), principal_id=k.get("application_id"))
                for k in self._items(data, "api_keys", "list API keys")]

    def delete_principal(self, principal_id: str) -> None:
        self._request("DELETE", f"/applications/{principal_id}")
        logger.info("Scaleway application deleted: %s", principal_id)

    def delete_api_key(self, key: str) -> None:
        self._request("DELETE", f"/api-keys/{key}")


# ============================================================
# Exoscale IAM (API v2)
# ============================================================
EXOSCALE_API_PREFIX = "/v2"
EXOSCALE_ROLE_PREFIX = "proprion-"
EXOSCALE_PROPAGATION_DELAY = 3


class ExoscaleIAMProvider(IAMProvider):
    """Exoscale IAM: roles carrying an inline SOS policy, plus API keys.

    Role creation is asynchronous; the role id comes from the operation's
    reference. Deleting a role leaves its API keys behind, so callers delete
    the keys first (see cascades_api_key_deletion).
    """

    def __init__(self, config, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT, clock: Callable[[], float] = time.time):
        signer = HmacRequestSigner(config.api_key, config.api_secret, clock=clock)
        super().__init__(signer, session=session, timeout=timeout)
        self._base_url = config.api_base

    @property
    def provider_name(self) -> str:
        return "exoscale"

    @property
    def propagation_delay(self) -> float:
        return EXOSCALE_PROPAGATION_DELAY

    @property
    def cascades_api_key_deletion(self) -> bool:
        return False

    def app_prefix(self, app_name: str) -> str:
        return f"apps/{app_name}/"

    def principal_name(self, app_name: str) -> str:
        return f"{EXOSCALE_ROLE_PREFIX}{app_name}"

    def api_key_label(self, app_name: str) -> str:
        return f"{EXOSCALE_ROLE_PREFIX}{app_name}-key"

    def managed_app_name(self, principal: Principal) -> Optional[str]:
        if not principal.name or not principal.name.startswith(EXOSCALE_ROLE_PREFIX):
            return None
        return principal.name[len(EXOSCALE_ROLE_PREFIX):]

    def create_principal(self, name: str, description: str,
                         bucket: str, prefix: str) -> Principal:
        data = self._request("POST", f"{EXOSCALE_API_PREFIX}/iam-role", {
            "name": name,
            "description": description,
            "editable": False,
            "policy": build_exoscale_role_policy(bucket, prefix),
        })
        if data is None:
            raise ProtocolError("create IAM role returned an empty body", service="exoscale")
        operation = AsyncOperation.from_dict(data)
        role_id = operation.resolve_reference_id()
        logger.info("Exoscale role created: %s (operation %s, %s)",
                    role_id, operation.id, operation.state)
        return Principal(id=role_id, name=name, description=description)

    def create_api_key(self, principal_id: str, label: str) -> ApiKey:
        data = self._request("POST", f"{EXOSCALE_API_PREFIX}/api-key", {
            "name": label,
            "role-id": principal_id,
        })
        key = self._require(data, "key", "create API key")
        secret = self._require(data, "secret", "create API key")
        logger.info("Exoscale API key created: %s", key)
        return ApiKey(key=key, name=data.get("name", label),
                      principal_id=data.get("role-id", principal_id), secret=secret)

    def list_principals(self) -> List[Principal]:
        data = self._request("GET", f"{EXOSCALE_API_PREFIX}/iam-role")
        return [Principal(id=self._require(r, "id", "list IAM roles"),
                          name=r.get("name"), description=r.get("description"))
                for r in self._items(data, "iam-roles", "list IAM roles")]

    def list_api_keys(self) -> List[ApiKey]:
        data = self._request("GET", f"{EXOSCALE_API_PREFIX}/api-key")
        return [ApiKey(key=self._require(k, "key", "list API keys"),
                       name=k.get("name"), principal_id=k.get("role-id"))
                for k in self._items(data, "api-keys", "list API keys")]

    def delete_principal(self, principal_id: str) -> None:
        self._request("DELETE", f"{EXOSCALE_API_PREFIX}/iam-role/{principal_id}")
        logger.info("Exoscale role deleted: %s", principal_id)

    def delete_api_key(self, key: str) -> None:
        self._request("DELETE", f"{EXOSCALE_API_PREFIX}/api-key/{key}")
