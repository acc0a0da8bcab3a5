#!/usr/bin/env python3
# CUI // SP-CTI
"""proprion CLI — manage app credentials scoped to a bucket prefix.

CLI: add-provider, list-providers, remove-provider, config-path,
     create-app, list-apps, delete-app  (--config, --json, --verbose)

Progress goes to stderr. The credential bundle of create-app goes to stdout,
once; its secret cannot be retrieved again.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from proprion import config as config_store
from proprion.cloud.provider_factory import create_iam_provider, create_object_storage
from proprion.config import ExoscaleProviderConfig, ScalewayProviderConfig
from proprion.errors import ConfigurationError, ProprionError
from proprion.orchestrator import ProvisioningOrchestrator

logger = logging.getLogger("proprion.cli")

STEP_MESSAGES = {
    "ensure_bucket": "Checking/creating bucket '{bucket}'...",
    "create_principal": "Creating IAM principal...",
    "create_scoped_policy": "Creating IAM policy...",
    "wait_propagation": "Waiting for role to propagate...",
    "create_api_key": "Creating API key...",
    "apply_bucket_policy": "Applying bucket policy for prefix '{prefix}'...",
}


def _err(message: str = "") -> None:
    print(message, file=sys.stderr)


def _provider_config(registry, name: str):
    cfg = registry.get(name)
    if cfg is None:
        raise ConfigurationError(
            f"Provider '{name}' not found. Run 'proprion list-providers' to see "
            f"configured providers.", config_key=name)
    return cfg


def cmd_add_provider(args) -> int:
    if args.provider_type == "scaleway":
        cfg = ScalewayProviderConfig(
            access_key=args.access_key, secret_key=args.secret_key,
            organization_id=args.organization_id, project_id=args.project_id,
            region=args.region, bucket=args.bucket,
        )
    else:
        cfg = ExoscaleProviderConfig(
            api_key=args.api_key, api_secret=args.api_secret,
            zone=args.zone, bucket=args.bucket,
        )
    config_store.validate_provider(args.name, cfg)
    registry = config_store.load(args.config)
    registry.put(args.name, cfg)
    path = config_store.save(registry, args.config)
    if args.json:
        print(json.dumps({"added": args.name, "type": cfg.type_name, "config": str(path)}))
    else:
        print(f"Provider '{args.name}' added successfully.")
        print(f"Config saved to: {path}")
    return 0


def cmd_list_providers(args) -> int:
    registry = config_store.load(args.config)
    if args.json:
        print(json.dumps([
            {"name": name, "type": cfg.type_name, cfg.location_key: cfg.location,
             "bucket": cfg.bucket}
            for name, cfg in registry.items()
        ], indent=2))
        return 0
    if not len(registry):
        print("No providers configured.")
        print("Add one with: proprion add-provider --help")
        return 0
    print("Configured providers:")
    for name, cfg in registry.items():
        print(f"  - {name} [{cfg.type_name} ({cfg.location})]")
    return 0


def cmd_remove_provider(args) -> int:
    registry = config_store.load(args.config)
    removed = registry.remove(args.name)
    if removed is None:
        print(f"Provider '{args.name}' not found.")
        return 1
    config_store.save(registry, args.config)
    print(f"Provider '{args.name}' removed.")
    return 0


def cmd_config_path(args) -> int:
    print(config_store.config_path(args.config))
    return 0


def cmd_create_app(args) -> int:
    cfg = _provider_config(config_store.load(args.config), args.provider)
    with create_iam_provider(cfg) as provider:
        prefix = provider.app_prefix(args.name)

        def progress(index: int, total: int, step: str) -> None:
            message = STEP_MESSAGES.get(step, step).format(bucket=cfg.bucket, prefix=prefix)
            _err(f"  [{index}/{total}] {message}")

        orchestrator = ProvisioningOrchestrator(
            provider, cfg, storage=create_object_storage(cfg), progress=progress)
        _err(f"Creating app '{args.name}' on {provider.provider_name}...")
        result = orchestrator.create_application(args.name, args.description)

    print(json.dumps(result.bundle.to_dict(), indent=2))
    _err()
    _err("IMPORTANT: Save the secret_key now - it cannot be retrieved later!")
    _err(f"Principal ID: {result.principal.id} (save this to delete the app later)")
    _err(f"This app can ONLY access: s3://{cfg.bucket}/{prefix}")
    return 0


def cmd_list_apps(args) -> int:
    cfg = _provider_config(config_store.load(args.config), args.provider)
    with create_iam_provider(cfg) as provider:
        apps = ProvisioningOrchestrator(provider, cfg).list_applications()
    if args.json:
        print(json.dumps([
            {"name": name, "id": p.id, "description": p.description} for name, p in apps
        ], indent=2))
        return 0
    if not apps:
        print("No applications found.")
        return 0
    print("Applications:")
    for name, principal in apps:
        print(f"  - {name} (ID: {principal.id})")
        if principal.description:
            print(f"    {principal.description}")
    return 0


def cmd_delete_app(args) -> int:
    cfg = _provider_config(config_store.load(args.config), args.provider)
    _err(f"Deleting application {args.app_id}...")
    with create_iam_provider(cfg) as provider:
        report = ProvisioningOrchestrator(provider, cfg).delete_application(args.app_id)

    if args.json:
        print(json.dumps({
            "deleted": report.principal_id,
            "deleted_keys": report.deleted_keys,
            "failed_keys": [{"key": k, "error": e} for k, e in report.failed_keys],
        }, indent=2))
    else:
        for key in report.deleted_keys:
            print(f"  Deleted API key {key}")
        for key, error in report.failed_keys:
            print(f"  WARN: could not delete API key {key}: {error}")
        print("Application deleted successfully.")
    if isinstance(cfg, ScalewayProviderConfig):
        _err("Note: the app's bucket-policy statement is left in place; "
             "remove it manually if needed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proprion",
        description="Manage app credentials scoped to an object-storage prefix",
    )
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    add = sub.add_parser("add-provider", help="Add a new provider configuration")
    add_sub = add.add_subparsers(dest="provider_type")
    add_sub.required = True

    scw = add_sub.add_parser("scaleway", help="Add Scaleway provider")
    scw.add_argument("-n", "--name", required=True, help="Provider name (your choice)")
    scw.add_argument("--access-key", required=True)
    scw.add_argument("--secret-key", required=True)
    scw.add_argument("--region", required=True, help="e.g. fr-par, nl-ams, pl-waw")
    scw.add_argument("--bucket", required=True)
    scw.add_argument("--organization-id", required=True)
    scw.add_argument("--project-id", required=True)

    exo = add_sub.add_parser("exoscale", help="Add Exoscale provider")
    exo.add_argument("-n", "--name", required=True, help="Provider name (your choice)")
    exo.add_argument("--api-key", required=True)
    exo.add_argument("--api-secret", required=True)
    exo.add_argument("--zone", required=True, help="e.g. ch-gva-2, de-fra-1, ch-dk-2")
    exo.add_argument("--bucket", required=True)
    add.set_defaults(func=cmd_add_provider)

    sub.add_parser("list-providers", help="List configured providers").set_defaults(
        func=cmd_list_providers)

    rm = sub.add_parser("remove-provider", help="Remove a provider configuration")
    rm.add_argument("-n", "--name", required=True)
    rm.set_defaults(func=cmd_remove_provider)

    sub.add_parser("config-path", help="Show config file path").set_defaults(
        func=cmd_config_path)

    create = sub.add_parser("create-app", help="Create credentials for a new app")
    create.add_argument("-p", "--provider", required=True, help="Provider name (from config)")
    create.add_argument("-n", "--name", required=True, help="App name")
    create.add_argument("-d", "--description", required=True, help="App description")
    create.set_defaults(func=cmd_create_app)

    ls = sub.add_parser("list-apps", help="List existing apps")
    ls.add_argument("-p", "--provider", required=True)
    ls.set_defaults(func=cmd_list_apps)

    delete = sub.add_parser("delete-app", help="Delete an app and its credentials")
    delete.add_argument("-p", "--provider", required=True)
    delete.add_argument("-a", "--app-id", required=True, help="Application or role ID")
    delete.set_defaults(func=cmd_delete_app)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    try:
        return args.func(args)
    except ProprionError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        _err(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
