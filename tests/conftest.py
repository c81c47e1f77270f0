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
from fake_prism import FakePrismCentral

import nutanix_deploy
from nutanix_deploy.config import Config
from nutanix_deploy.handler import Commander
from nutanix_deploy.provider.client import NutanixClient
from nutanix_deploy.resources import resource
from nutanix_deploy.state import StateStore

NUTANIX_ENV_VARS = [
    "NUTANIX_USERNAME",
    "NUTANIX_PASSWORD",
    "NUTANIX_ENDPOINT",
    "NUTANIX_PORT",
    "NUTANIX_PROXY_URL",
    "NUTANIX_INSECURE",
    "NUTANIX_WAIT_TIMEOUT",
]


@pytest.fixture(autouse=True)
def reset_all_objects(tmp_path, monkeypatch):
    """
    Every test gets its own state directory and a configuration without any files
    """
    monkeypatch.setattr(nutanix_deploy, "RUNNING_TESTS", True)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name in NUTANIX_ENV_VARS or name.startswith("NUTANIX_DEPLOY_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("NUTANIX_DEPLOY_CONFIG_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("NUTANIX_DEPLOY_DEPLOY_POLL_INTERVAL", "0")

    Config._reset()
    Config.load_config(config_dir=None, main_cfg_file=str(tmp_path / "nutanix-deploy.cfg"))

    root = logging.getLogger()
    tornado_logger = logging.getLogger("tornado")
    levels = (root.level, tornado_logger.level)
    yield
    for handler in list(root.handlers):
        if getattr(handler, "_nutanix_deploy", False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(levels[0])
    tornado_logger.setLevel(levels[1])
    Config._reset()


@pytest.fixture
def clean_registry():
    """
    Restore the registered resource types and handlers after the test, so a test can register its own.
    """
    resources = dict(resource._resources)
    aliases = dict(resource._aliases)
    handlers = {k: dict(v) for k, v in Commander.get_handlers().items()}
    yield
    resource._resources = resources
    resource._aliases = aliases
    Commander.reset()
    for resource_type, handler_map in handlers.items():
        for name, handler_class in handler_map.items():
            Commander.add_provider(resource_type, name, handler_class)


@pytest.fixture
def state_store(tmp_path) -> StateStore:
    return StateStore(str(tmp_path / "state"))


@pytest.fixture
def prism(monkeypatch) -> FakePrismCentral:
    """
    Connect the provider to an in-memory Prism Central
    """
    fake = FakePrismCentral()

    async def fetch(self, request):
        return await fake.fetch(request)

    monkeypatch.setattr(NutanixClient, "_fetch", fetch)
    monkeypatch.setenv("NUTANIX_ENDPOINT", "prism.example.com")
    monkeypatch.setenv("NUTANIX_USERNAME", "admin")
    monkeypatch.setenv("NUTANIX_PASSWORD", "nutanix/4u")
    return fake
