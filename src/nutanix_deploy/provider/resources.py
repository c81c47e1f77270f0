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

from typing import Annotated, Any, Literal, Optional, Self

import pydantic

from nutanix_deploy.const import AUTONAME_MAX_LENGTH, MAIN_MODULE
from nutanix_deploy.resources import Resource, resource
from nutanix_deploy.tokens import make_resource

Name = Annotated[str, pydantic.StringConstraints(min_length=1, max_length=AUTONAME_MAX_LENGTH)]


class ArgsBase(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="forbid")


@resource(make_resource(MAIN_MODULE, "VirtualMachine"))
class VirtualMachine(Resource):
    """
    A virtual machine on a Nutanix cluster.

    The ip address is the first address of the first nic. It is only available when the vm is connected to a subnet.
    """

    class Args(ArgsBase):
        name: Name
        description: Optional[str] = None
        num_sockets: pydantic.PositiveInt = 1
        num_vcpus_per_socket: pydantic.PositiveInt = 1
        memory_size_mib: pydantic.PositiveInt = 1024
        cluster_uuid: Optional[str] = None
        subnet_uuids: list[str] = []
        image_uuid: Optional[str] = None
        power_state: Literal["ON", "OFF"] = "ON"
        categories: dict[str, str] = {}

    fields = (
        "name",
        "description",
        "num_sockets",
        "num_vcpus_per_socket",
        "memory_size_mib",
        "cluster_uuid",
        "subnet_uuids",
        "image_uuid",
        "power_state",
        "categories",
    )
    outputs = ("ip_address", "state", "cluster_name")


@resource(make_resource(MAIN_MODULE, "Image"))
class Image(Resource):
    """A disk or iso image, downloaded by Prism Central from the source uri"""

    class Args(ArgsBase):
        name: Name
        description: Optional[str] = None
        source_uri: str
        image_type: Literal["DISK_IMAGE", "ISO_IMAGE"] = "DISK_IMAGE"

    fields = ("name", "description", "source_uri", "image_type")
    outputs = ("size_bytes", "state")


@resource(make_resource(MAIN_MODULE, "Subnet"))
class Subnet(Resource):
    """A VLAN subnet with ip address management"""

    class Args(ArgsBase):
        name: Name
        description: Optional[str] = None
        cluster_uuid: str
        vlan_id: int = pydantic.Field(ge=0, le=4095)
        subnet_ip: Optional[str] = None
        prefix_length: Optional[int] = pydantic.Field(default=None, ge=0, le=32)
        default_gateway_ip: Optional[str] = None

        @pydantic.model_validator(mode="after")
        def check_ip_config(self) -> Self:
            if (self.subnet_ip is None) != (self.prefix_length is None):
                raise ValueError("subnet_ip and prefix_length should be set together")
            return self

    fields = ("name", "description", "cluster_uuid", "vlan_id", "subnet_ip", "prefix_length", "default_gateway_ip")
    outputs = ("state",)


@resource(make_resource(MAIN_MODULE, "CategoryKey"))
class CategoryKey(Resource):
    class Args(ArgsBase):
        name: Name
        description: Optional[str] = None

    fields = ("name", "description")
    outputs = ("system_defined",)


@resource(make_resource(MAIN_MODULE, "CategoryValue"))
class CategoryValue(Resource):
    """
    A value of a category key. The name is the name of the category key, it is never generated.
    """

    autonamed = False

    class Args(ArgsBase):
        name: Name
        value: Name
        description: Optional[str] = None

    fields = ("name", "value", "description")
    outputs = ("system_defined",)


@resource(
    make_resource(MAIN_MODULE, "NetworkSecurityRule"),
    aliases=[make_resource(MAIN_MODULE, "NetworkSecurityGroup")],
)
class NetworkSecurityRule(Resource):
    """
    A flow network security rule. The rules are passed as-is to Prism Central, in the format of its v3 API.
    """

    class Args(ArgsBase):
        name: Name
        description: Optional[str] = None
        app_rule: Optional[dict[str, Any]] = None
        isolation_rule: Optional[dict[str, Any]] = None
        quarantine_rule: Optional[dict[str, Any]] = None
        categories: dict[str, str] = {}

        @pydantic.model_validator(mode="after")
        def check_single_rule(self) -> Self:
            rules = [r for r in (self.app_rule, self.isolation_rule, self.quarantine_rule) if r is not None]
            if len(rules) != 1:
                raise ValueError("exactly one of app_rule, isolation_rule and quarantine_rule should be set")
            return self

    fields = ("name", "description", "app_rule", "isolation_rule", "quarantine_rule", "categories")
    outputs = ("state",)
