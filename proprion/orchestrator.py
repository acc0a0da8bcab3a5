#!/usr/bin/env python3
# CUI // SP-CTI
"""Provisioning Orchestrator — scoped credentials for one application.

Create flow (one linear sequence, provider traits decide which steps run):

    ensure_bucket -> create_principal -> create_scoped_policy (Scaleway)
    -> wait_propagation (Exoscale) -> create_api_key
    -> apply_bucket_policy (Scaleway) -> credential bundle

A failed step stops the run with ProvisioningError naming the step. Remote
resources created by earlier steps are NOT rolled back; the error carries the
principal id so an operator can delete it.

The Exoscale wait is a fixed sleep, not a readiness poll: the IAM API exposes
no readiness check for new roles.

Usage:
    from proprion.cloud.provider_factory import create_iam_provider, create_object_storage

    orchestrator = ProvisioningOrchestrator(
        create_iam_provider(cfg), cfg, storage=create_object_storage(cfg))
    result = orchestrator.create_application("svc-a", "billing service")
    print(result.bundle.to_dict())
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from proprion.cloud.iam_provider import IAMProvider, Principal, ScopedPolicy
from proprion.cloud.policy import build_bucket_policy_statement
from proprion.cloud.storage_provider import ObjectStorage
from proprion.errors import ProprionError, ProvisioningError, ValidationError

logger = logging.getLogger("proprion.orchestrator")

APP_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,62}$")

STEP_ENSURE_BUCKET = "ensure_bucket"
STEP_CREATE_PRINCIPAL = "create_principal"
STEP_CREATE_SCOPED_POLICY = "create_scoped_policy"
STEP_WAIT_PROPAGATION = "wait_propagation"
STEP_CREATE_API_KEY = "create_api_key"
STEP_APPLY_BUCKET_POLICY = "apply_bucket_policy"
STEP_LIST_PRINCIPALS = "list_principals"
STEP_LIST_API_KEYS = "list_api_keys"
STEP_DELETE_PRINCIPAL = "delete_principal"


def validate_app_name(name: str) -> str:
    """Reject names that could escape a policy expression or resource path."""
    if not isinstance(name, str) or not APP_NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid app name {name!r}: use 1-63 letters, digits, '.', '_' or '-', "
            f"starting with a letter or digit")
    return name


@dataclass
class CredentialBundle:
    """Credentials handed to the application. Emitted once; not re-derivable."""

    access_key: str
    secret_key: str = field(repr=False)
    endpoint: str
    location_key: str
    location: str
    bucket: str
    prefix: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "access_key": self.access_key,
            "secret_key": self.secret_key,
            "endpoint": self.endpoint,
            self.location_key: self.location,
            "bucket": self.bucket,
            "prefix": self.prefix,
        }


@dataclass
class ProvisioningResult:
    app_name: str
    principal: Principal
    bundle: CredentialBundle
    policy: Optional[ScopedPolicy] = None
    bucket_created: bool = False


@dataclass
class DeletionReport:
    """Outcome of an application teardown.

    failed_keys holds (access key, error) for keys that could not be deleted;
    those failures did not stop the principal deletion.
    """

    principal_id: str
    deleted_keys: List[str] = field(default_factory=list)
    failed_keys: List[Tuple[str, str]] = field(default_factory=list)
    cascaded: bool = False


class ProvisioningOrchestrator:
    """Drive create/list/delete flows through the IAMProvider interface.

    Args:
        provider: IAM provider for this run.
        config: Provider config (bucket, endpoint, location).
        storage: Object storage for bucket bootstrap and bucket policy.
            Required by create_application only.
        sleep: Called for the propagation wait; injectable for tests.
        progress: Optional callback ``(index, total, step)`` before each step.
    """

    def __init__(self, provider: IAMProvider, config,
                 storage: Optional[ObjectStorage] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 progress: Optional[Callable[[int, int, str], None]] = None):
        self._provider = provider
        self._config = config
        self._storage = storage
        self._sleep = sleep
        self._progress = progress

    def planned_steps(self) -> List[str]:
        """Steps create_application will run for this provider, in order."""
        steps = [STEP_ENSURE_BUCKET, STEP_CREATE_PRINCIPAL]
        if self._provider.requires_scoped_policy:
            steps.append(STEP_CREATE_SCOPED_POLICY)
        if self._provider.propagation_delay:
            steps.append(STEP_WAIT_PROPAGATION)
        steps.append(STEP_CREATE_API_KEY)
        if self._provider.uses_bucket_policy:
            steps.append(STEP_APPLY_BUCKET_POLICY)
        return steps

    def _run_step(self, step: str, fn: Callable, *args,
                  principal_id: Optional[str] = None, **kwargs):
        steps = self.planned_steps()
        if self._progress and step in steps:
            self._progress(steps.index(step) + 1, len(steps), step)
        logger.info("[%s] %s", self._provider.provider_name, step)
        try:
            return fn(*args, **kwargs)
        except ProprionError as exc:
            logger.error("[%s] %s failed: %s", self._provider.provider_name, step, exc)
            raise ProvisioningError(step, self._provider.provider_name, exc,
                                    principal_id=principal_id) from exc

    # -- create ---------------------------------------------------------

    def create_application(self, app_name: str, description: str) -> ProvisioningResult:
        """Provision a principal, its scoped permissions and one API key."""
        validate_app_name(app_name)
        if self._storage is None:
            raise ValidationError("create_application needs object storage")

        provider = self._provider
        bucket = self._config.bucket
        prefix = provider.app_prefix(app_name)

        created = self._run_step(STEP_ENSURE_BUCKET, self._storage.ensure_bucket, bucket)

        principal = self._run_step(
            STEP_CREATE_PRINCIPAL, provider.create_principal,
            provider.principal_name(app_name), description, bucket, prefix)

        policy = None
        if provider.requires_scoped_policy:
            policy = self._run_step(
                STEP_CREATE_SCOPED_POLICY, provider.create_scoped_policy,
                principal.id, f"{app_name}-policy", principal_id=principal.id)

        if provider.propagation_delay:
            self._run_step(STEP_WAIT_PROPAGATION, self._sleep, provider.propagation_delay,
                           principal_id=principal.id)

        api_key = self._run_step(
            STEP_CREATE_API_KEY, provider.create_api_key,
            principal.id, provider.api_key_label(app_name), principal_id=principal.id)

        if provider.uses_bucket_policy:
            statement = build_bucket_policy_statement(app_name, principal.id, bucket, prefix)
            self._run_step(STEP_APPLY_BUCKET_POLICY, self._storage.apply_bucket_statement,
                           bucket, statement, principal_id=principal.id)

        bundle = CredentialBundle(
            access_key=api_key.key,
            secret_key=api_key.secret,
            endpoint=self._config.endpoint,
            location_key=self._config.location_key,
            location=self._config.location,
            bucket=bucket,
            prefix=prefix,
        )
        logger.info("App %s provisioned on %s: principal=%s access_key=%s",
                    app_name, provider.provider_name, principal.id, api_key.key)
        return ProvisioningResult(app_name=app_name, principal=principal, bundle=bundle,
                                  policy=policy, bucket_created=bool(created))

    # -- list -----------------------------------------------------------

    def list_applications(self) -> List[Tuple[str, Principal]]:
        """(app name, principal) for every principal this tool manages."""
        principals = self._run_step(STEP_LIST_PRINCIPALS, self._provider.list_principals)
        apps = []
        for principal in principals:
            name = self._provider.managed_app_name(principal)
            if name is not None:
                apps.append((name, principal))
        return apps

    # -- delete ---------------------------------------------------------

    def delete_application(self, principal_id: str) -> DeletionReport:
        """Delete a principal, tearing down its API keys first where needed.

        Individual key deletions are best-effort; the principal deletion
        result is authoritative.
        """
        provider = self._provider
        report = DeletionReport(principal_id=principal_id,
                                cascaded=provider.cascades_api_key_deletion)

        if not provider.cascades_api_key_deletion:
            keys = self._run_step(STEP_LIST_API_KEYS, provider.list_api_keys)
            for key in keys:
                if key.principal_id != principal_id:
                    continue
                try:
                    provider.delete_api_key(key.key)
                    report.deleted_keys.append(key.key)
                except ProprionError as exc:
                    logger.warning("Could not delete API key %s of %s: %s",
                                   key.key, principal_id, exc)
                    report.failed_keys.append((key.key, str(exc)))

        self._run_step(STEP_DELETE_PRINCIPAL, provider.delete_principal, principal_id)
        logger.info("Principal %s deleted on %s (%d key(s) removed, %d failed)",
                    principal_id, provider.provider_name,
                    len(report.deleted_keys), len(report.failed_keys))
        return report
