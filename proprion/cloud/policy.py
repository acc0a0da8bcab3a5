#!/usr/bin/env python3
# CUI // SP-CTI
"""Scoped Policy Builders — least-privilege documents per provider.

Pure functions, no I/O:
  - Scaleway IAM policy rule (object permission sets for one project).
  - Exoscale role policy (default deny, two allow rules scoped to bucket/prefix).
  - Scaleway bucket-policy statement for one application prefix.
  - Bucket-policy merge keyed by statement Sid.

Bucket and prefix values are substituted verbatim into expression and
resource strings. Callers pass only validated names (see
proprion.orchestrator.validate_app_name).
"""

import copy
from typing import Dict, List, Optional

BUCKET_POLICY_VERSION = "2023-04-17"

SCALEWAY_OBJECT_PERMISSION_SETS = (
    "ObjectStorageObjectsRead",
    "ObjectStorageObjectsWrite",
    "ObjectStorageObjectsDelete",
)

EXOSCALE_OBJECT_OPERATIONS = ("get-object", "put-object", "delete-object", "head-object")

BUCKET_POLICY_OBJECT_ACTIONS = ("s3:GetObject", "s3:PutObject", "s3:DeleteObject")


def statement_id(app_name: str) -> str:
    """Merge key of an application's bucket-policy statement."""
    return f"app-{app_name}"


def build_scaleway_policy_rules(project_id: str) -> List[Dict]:
    """Rules for a Scaleway IAM policy: object read/write/delete in one project.

    Never grants bucket management or ObjectStorageFullAccess.
    """
    return [{
        "project_ids": [project_id],
        "permission_set_names": list(SCALEWAY_OBJECT_PERMISSION_SETS),
    }]


def build_exoscale_role_policy(bucket: str, prefix: str) -> Dict:
    """Inline policy for an Exoscale IAM role.

    Everything is denied by default. The SOS service gets two allow rules:
    listing the bucket, and object operations on keys starting with prefix.
    """
    operations = ", ".join(f"'{op}'" for op in EXOSCALE_OBJECT_OPERATIONS)
    return {
        "default-service-strategy": "deny",
        "services": {
            "sos": {
                "type": "rules",
                "rules": [
                    {
                        "action": "allow",
                        "expression": (
                            f"operation == 'list-objects' && "
                            f"resources.bucket == '{bucket}'"
                        ),
                    },
                    {
                        "action": "allow",
                        "expression": (
                            f"operation in [{operations}] && "
                            f"resources.bucket == '{bucket}' && "
                            f"parameters.key.startsWith('{prefix}')"
                        ),
                    },
                ],
            },
        },
    }


def build_bucket_policy_statement(app_name: str, principal_id: str,
                                  bucket: str, prefix: str) -> Dict:
    """Bucket-policy statement granting one application access to its prefix."""
    return {
        "Sid": statement_id(app_name),
        "Effect": "Allow",
        "Principal": {"SCW": f"application_id:{principal_id}"},
        "Action": list(BUCKET_POLICY_OBJECT_ACTIONS),
        "Resource": f"{bucket}/{prefix}/*",
    }


def empty_bucket_policy() -> Dict:
    return {"Version": BUCKET_POLICY_VERSION, "Statement": []}


def merge_bucket_policy(existing: Optional[Dict], statement: Dict) -> Dict:
    """Insert or replace one statement in a bucket-policy document.

    Any statement with the same Sid is removed, then the new statement is
    appended. Other statements keep their relative order. The input document
    is not modified.

    Args:
        existing: Current policy document, or None when the bucket has none.
        statement: Statement carrying a ``Sid``.

    Returns:
        The full updated document.
    """
    document = copy.deepcopy(existing) if existing else empty_bucket_policy()
    document.setdefault("Version", BUCKET_POLICY_VERSION)

    statements = document.get("Statement")
    if isinstance(statements, dict):
        statements = [statements]
    elif not isinstance(statements, list):
        statements = []

    sid = statement.get("Sid")
    statements = [s for s in statements
                  if not (isinstance(s, dict) and s.get("Sid") == sid)]
    statements.append(copy.deepcopy(statement))
    document["Statement"] = statements
    return document
