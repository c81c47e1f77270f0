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

RUNNING_TESTS = False
"""
    This is enabled/disabled by the test suite when tests are run.
    This variable is used to disable certain features that shouldn't run during tests.
"""

from nutanix_deploy.output import Output, Unknown  # noqa: E402
from nutanix_deploy.resources import ResourceOptions  # noqa: E402
from nutanix_deploy.stack import export, get_stack  # noqa: E402
from nutanix_deploy.provider.resources import (  # noqa: E402
    CategoryKey,
    CategoryValue,
    Image,
    NetworkSecurityRule,
    Subnet,
    VirtualMachine,
)
from nutanix_deploy.provider.data_sources import (  # noqa: E402
    get_category_key,
    get_cluster,
    get_clusters,
    get_image,
    get_network_security_rule,
    get_subnet,
    get_virtual_machine,
)

__all__ = [
    "CategoryKey",
    "CategoryValue",
    "Image",
    "NetworkSecurityRule",
    "Output",
    "ResourceOptions",
    "Subnet",
    "Unknown",
    "VirtualMachine",
    "export",
    "get_category_key",
    "get_cluster",
    "get_clusters",
    "get_image",
    "get_network_security_rule",
    "get_stack",
    "get_subnet",
    "get_virtual_machine",
]

if __name__ == "__main__":
    import nutanix_deploy.app

    nutanix_deploy.app.app()
