#!/usr/bin/env python3
# CUI // SP-CTI
"""Provider Factory — config-driven provider resolution.

Maps a provider config from the registry to the IAM provider and object
storage implementations for its type. Every call builds fresh instances:
a provisioning run never shares a client (or its secrets) with another run.
"""

import logging
from typing import Dict, Type

from proprion.cloud.iam_provider import ExoscaleIAMProvider, IAMProvider, ScalewayIAMProvider
from proprion.cloud.storage_provider import ObjectStorage
from proprion.errors import ConfigurationError

logger = logging.getLogger("proprion.cloud.factory")

IAM_PROVIDERS: Dict[str, Type[IAMProvider]] = {
    "scaleway": ScalewayIAMProvider,
    "exoscale": ExoscaleIAMProvider,
}


def create_iam_provider(config, **kwargs) -> IAMProvider:
    """Build the IAM provider for a provider config.

    Extra keyword arguments (session, timeout, clock) go to the provider.
    """
    cls = IAM_PROVIDERS.get(getattr(config, "type_name", None))
    if cls is None:
        raise ConfigurationError(f"Unsupported provider config: {type(config).__name__}")
    logger.debug("Resolved IAM provider %s", cls.__name__)
    return cls(config, **kwargs)


def create_object_storage(config, client=None) -> ObjectStorage:
    """Build the S3 client for the provider's endpoint and bucket credentials."""
    return ObjectStorage(
        endpoint=config.endpoint,
        region=config.location,
        access_key=config.access_key,
        secret_key=config.secret_key,
        client=client,
    )
