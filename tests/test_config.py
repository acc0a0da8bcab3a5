#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for proprion/config.py (provider registry persistence)."""

import os
import stat
import sys

import pytest
import yaml

from proprion import config as config_store
from proprion.config import (
    ExoscaleProviderConfig, ProviderRegistry, ScalewayProviderConfig, provider_from_dict,
    validate_provider,
)
from proprion.errors import ConfigurationError


class TestProviderConfigs:
    def test_scaleway_derived_values(self, scaleway_config):
        assert scaleway_config.endpoint == "https://s3.fr-par.scw.cloud"
        assert scaleway_config.location_key == "region"
        assert scaleway_config.location == "fr-par"

    def test_exoscale_derived_values(self, exoscale_config):
        assert exoscale_config.endpoint == "https://sos-de-fra-1.exo.io"
        assert exoscale_config.api_base == "https://api-de-fra-1.exoscale.com"
        assert exoscale_config.location_key == "zone"
        assert exoscale_config.access_key == "EXOkey"
        assert exoscale_config.secret_key == "exo-secret"

    def test_repr_hides_secrets(self, scaleway_config, exoscale_config):
        assert "scw-secret-key" not in repr(scaleway_config)
        assert "exo-secret" not in repr(exoscale_config)


class TestProviderFromDict:
    def test_unknown_type(self):
        with pytest.raises(ConfigurationError) as excinfo:
            provider_from_dict("x", {"type": "aws"})
        assert excinfo.value.config_key == "x.type"

    def test_missing_field(self):
        with pytest.raises(ConfigurationError) as excinfo:
            provider_from_dict("exo", {"type": "exoscale", "api_key": "k",
                                       "api_secret": "s", "zone": "ch-gva-2"})
        assert excinfo.value.config_key == "exo.bucket"

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            provider_from_dict("x", ["scaleway"])

    @pytest.mark.parametrize("zone", ["de fra 1", "DE-FRA-1", "de-fra-1.", "-x", "a/b"])
    def test_invalid_location(self, zone):
        with pytest.raises(ConfigurationError) as excinfo:
            provider_from_dict("exo", {"type": "exoscale", "api_key": "k",
                                       "api_secret": "s", "zone": zone, "bucket": "b"})
        assert excinfo.value.config_key == "exo.zone"

    def test_validate_provider_accepts_known_locations(self, scaleway_config,
                                                        exoscale_config):
        assert validate_provider("scw", scaleway_config) is scaleway_config
        assert validate_provider("exo", exoscale_config) is exoscale_config

    def test_exoscale(self):
        cfg = provider_from_dict("exo", {"type": "exoscale", "api_key": "k",
                                         "api_secret": "s", "zone": "ch-gva-2",
                                         "bucket": "b"})
        assert cfg == ExoscaleProviderConfig(api_key="k", api_secret="s",
                                             zone="ch-gva-2", bucket="b")


class TestRegistryPersistence:
    def test_missing_file_is_empty_registry(self, tmp_path):
        registry = config_store.load(tmp_path / "nope.yaml")
        assert len(registry) == 0
        assert registry.list() == []

    def test_save_and_load(self, tmp_path, scaleway_config, exoscale_config):
        path = tmp_path / "sub" / "config.yaml"
        registry = ProviderRegistry()
        registry.put("scw", scaleway_config)
        registry.put("exo", exoscale_config)
        assert config_store.save(registry, path) == path

        loaded = config_store.load(path)
        assert loaded.list() == ["exo", "scw"]
        assert loaded.get("scw") == scaleway_config
        assert loaded.get("exo") == exoscale_config

    def test_file_layout(self, tmp_path, scaleway_config):
        path = tmp_path / "config.yaml"
        registry = ProviderRegistry({"scw": scaleway_config})
        config_store.save(registry, path)
        data = yaml.safe_load(path.read_text())
        assert data["providers"]["scw"]["type"] == "scaleway"
        assert data["providers"]["scw"]["region"] == "fr-par"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_saved_file_is_owner_only(self, tmp_path, exoscale_config):
        path = tmp_path / "config.yaml"
        config_store.save(ProviderRegistry({"exo": exoscale_config}), path)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_remove(self, scaleway_config):
        registry = ProviderRegistry({"scw": scaleway_config})
        assert registry.remove("scw") == scaleway_config
        assert registry.remove("scw") is None
        assert len(registry) == 0

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("providers: [unclosed\n")
        with pytest.raises(ConfigurationError):
            config_store.load(path)

    def test_invalid_root(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            config_store.load(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert len(config_store.load(path)) == 0


class TestConfigPath:
    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PROPRION_CONFIG", str(tmp_path / "env.yaml"))
        assert config_store.config_path(tmp_path / "x.yaml") == tmp_path / "x.yaml"

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PROPRION_CONFIG", str(tmp_path / "env.yaml"))
        assert config_store.config_path() == tmp_path / "env.yaml"

    def test_default_path(self, monkeypatch):
        monkeypatch.delenv("PROPRION_CONFIG", raising=False)
        path = config_store.config_path()
        assert path.name == "config.yaml"
        assert "proprion" in str(path)
