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

from enum import Enum


class ResourceState(str, Enum):
    unavailable = "unavailable"  # No handler is available for the resource
    skipped = "skipped"
    dry = "dry"
    deployed = "deployed"
    failed = "failed"


class Change(str, Enum):
    nochange = "nochange"
    created = "created"
    purged = "purged"
    updated = "updated"


class ResourceAction(str, Enum):
    """
    Enumeration of all resource actions.
    """

    deploy = "deploy"
    dryrun = "dryrun"
    destroy = "destroy"


# Type tokens
PACKAGE_NAME = "nutanix"
MAIN_MODULE = "index"

# Auto naming of resources that have a name property
NAME_PROPERTY = "name"
AUTONAME_MAX_LENGTH = 255
AUTONAME_RANDOM_LENGTH = 7

# Prism Central
DEFAULT_PORT = 9440
API_BASE_PATH = "/api/nutanix/v3"
DEFAULT_PAGE_LENGTH = 100
DEFAULT_WAIT_TIMEOUT = 10  # minutes

# State file
STATE_FILE_SUFFIX = ".json"

ENV_VAR_PREFIX = "NUTANIX_DEPLOY"
CONFIG_FILE_NAME = "nutanix-deploy.cfg"

