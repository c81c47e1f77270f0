"""
    Copyright 2024 Inmanta

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

    Contact: code@inmanta.com
"""

import logging
import os

import pytest
from utils import log_contains

from nutanix_deploy import config, const
from nutanix_deploy.config import Config, Option, is_bool, is_int
from nutanix_deploy.provider import config as provider_config
from nutanix_deploy.provider.config import ProviderConfig, ProviderConfigurationError


def test_environment_override(monkeypatch):
    assert config.deploy_parallelism.get() == 10
    monkeypatch.setenv("NUTANIX_DEPLOY_DEPLOY_PARALLELISM", "3")
    assert config.deploy_parallelism.get() == 3
    assert config.deploy_parallelism.is_set()


def test_state_dir_from_env(tmp_path):
    assert config.state_dir.get() == str(tmp_path / "state")


def test_config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("NUTANIX_DEPLOY_DEPLOY_POLL_INTERVAL")
    cfg = tmp_path / "extra.cfg"
    cfg.write_text(
        """
[deploy]
stack=production
poll-interval=0.5

[nutanix]
endpoint=prism.example.com
"""
    )
    Config.load_config(str(cfg), config_dir=None, main_cfg_file=str(tmp_path / "missing.cfg"))
    assert config.stack_name.get() == "production"
    assert config.poll_interval.get() == 0.5
    assert config.stack_name.is_set()
    assert provider_config.endpoint.get() == "prism.example.com"
    assert not provider_config.username.is_set()


def test_config_dir_order(tmp_path):
    conf_d = tmp_path / "conf.d"
    conf_d.mkdir()
    (conf_d / "10-first.cfg").write_text("[deploy]\nstack=first\n")
    (conf_d / "20-second.cfg").write_text("[deploy]\nstack=second\n")
    (conf_d / "ignored.txt").write_text("[deploy]\nstack=ignored\n")
    Config.load_config(config_dir=str(conf_d), main_cfg_file=str(tmp_path / "missing.cfg"))
    assert config.stack_name.get() == "second"


def test_option_lookup_order(tmp_path, monkeypatch):
    """
    The prefixed environment variable wins over the config file, which wins over the provider variables
    """
    monkeypatch.setenv("NUTANIX_USERNAME", "from-provider-env")
    assert provider_config.username.get() == "from-provider-env"
    assert provider_config.username.is_set()

    provider_config.username.set("from-file")
    assert provider_config.username.get() == "from-file"

    monkeypatch.setenv("NUTANIX_DEPLOY_NUTANIX_USERNAME", "from-env")
    assert provider_config.username.get() == "from-env"


def test_is_bool():
    assert is_bool("yes")
    assert is_bool("True")
    assert not is_bool("off")
    assert is_bool(True)
    with pytest.raises(ValueError):
        is_bool("maybe")


def test_get_undefined_option(caplog):
    with caplog.at_level(logging.WARNING):
        assert Config.get("deploy", "does_not_exist", "fallback") == "fallback"
    log_contains(caplog, "nutanix_deploy.config", logging.WARNING, "Config name does-not-exist not defined in section deploy")


def test_option_documentation():
    option = Option("test_section", "some_option", 5, "Some documentation", is_int)
    try:
        assert option.get() == 5
        assert option.get_type() == "int"
        assert option.get_default_desc() == "5"
        assert config.state_dir.get_default_desc() == "~/.nutanix-deploy/state"
    finally:
        del Config.get_config_options()["test_section"]


def test_provider_config(monkeypatch):
    with pytest.raises(ProviderConfigurationError) as e:
        ProviderConfig.load()
    assert "NUTANIX_ENDPOINT" in str(e.value)

    monkeypatch.setenv("NUTANIX_ENDPOINT", "10.0.0.1")
    monkeypatch.setenv("NUTANIX_USERNAME", "admin")
    with pytest.raises(ProviderConfigurationError) as e:
        ProviderConfig.load()
    assert "password" in str(e.value)

    monkeypatch.setenv("NUTANIX_PASSWORD", "secret")
    monkeypatch.setenv("NUTANIX_INSECURE", "true")
    loaded = ProviderConfig.load()
    assert loaded.base_url == f"https://10.0.0.1:{const.DEFAULT_PORT}{const.API_BASE_PATH}"
    assert loaded.insecure
    assert loaded.password.get_secret_value() == "secret"
    assert "secret" not in repr(loaded)
    assert loaded.wait_timeout == const.DEFAULT_WAIT_TIMEOUT

    monkeypatch.setenv("NUTANIX_PORT", "0")
    with pytest.raises(ProviderConfigurationError):
        ProviderConfig.load()


def test_secret_option():
    assert provider_config.password.secret
    assert not provider_config.username.secret
    assert "password" in Config.get_config_options()[provider_config.SECTION]
    assert os.environ.get("NUTANIX_PASSWORD") is None
