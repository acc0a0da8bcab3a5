#!/usr/bin/env python3
# CUI // SP-CTI
"""Shared pytest fixtures for the proprion test suite.

Provides provider configs, a scripted in-memory HTTP session standing in for
requests.Session, and a fixed clock for signing.
"""

import json
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from proprion.config import ExoscaleProviderConfig, ScalewayProviderConfig  # noqa: E402

FIXED_NOW = 1700000000


class FakeResponse:
    """Minimal requests.Response stand-in."""

    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        if text is not None:
            self.text = text
        elif body is None:
            self.text = ""
        else:
            self.text = json.dumps(body)

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Scripted session: routes (METHOD, url-suffix) to queued responses.

    Every call is recorded in ``calls`` as a dict with method, url, data,
    params and headers. A route value may be an Exception instance, which is
    raised instead of returning a response.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, status_code=200, body=None, text=None, exc=None):
        entry = exc if exc is not None else FakeResponse(status_code, body, text)
        self.routes.setdefault((method, path), []).append(entry)
        return self

    def request(self, method, url, data=None, params=None, headers=None, timeout=None):
        self.calls.append({
            "method": method, "url": url, "data": data, "params": params,
            "headers": headers or {}, "timeout": timeout,
        })
        for (m, path), queue in self.routes.items():
            if m == method and url.endswith(path) and queue:
                entry = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(entry, Exception):
                    raise entry
                return entry
        raise AssertionError(f"Unexpected request: {method} {url}")

    def payload(self, index):
        """Decoded JSON body of the index-th recorded call."""
        return json.loads(self.calls[index]["data"].decode("utf-8"))


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def scaleway_config():
    return ScalewayProviderConfig(
        access_key="SCWACCESS", secret_key="scw-secret-key",
        organization_id="org-1", project_id="proj-1",
        region="fr-par", bucket="data",
    )


@pytest.fixture
def exoscale_config():
    return ExoscaleProviderConfig(
        api_key="EXOkey", api_secret="exo-secret", zone="de-fra-1", bucket="data",
    )
