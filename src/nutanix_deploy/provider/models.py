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

from typing import Any, Optional

import pydantic

JsonDict = dict[str, Any]


def _reference_uuid(reference: Optional[JsonDict]) -> Optional[str]:
    if not reference:
        return None
    return reference.get("uuid")


class VirtualMachineInfo(pydantic.BaseModel):
    """
    A virtual machine as reported by Prism Central
    """

    id: str
    name: str
    description: Optional[str] = None
    num_sockets: Optional[int] = None
    num_vcpus_per_socket: Optional[int] = None
    memory_size_mib: Optional[int] = None
    power_state: Optional[str] = None
    cluster_uuid: Optional[str] = None
    cluster_name: Optional[str] = None
    subnet_uuids: list[str] = []
    image_uuid: Optional[str] = None
    ip_address: Optional[str] = None
    categories: dict[str, str] = {}
    state: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: JsonDict) -> "VirtualMachineInfo":
        status = entity.get("status", {})
        resources = status.get("resources", {})
        nics = resources.get("nic_list", [])
        ip_address = None
        if nics and nics[0].get("ip_endpoint_list"):
            ip_address = nics[0]["ip_endpoint_list"][0].get("ip")
        image_uuid = None
        for disk in resources.get("disk_list", []):
            image_uuid = _reference_uuid(disk.get("data_source_reference"))
            if image_uuid is not None:
                break
        cluster = status.get("cluster_reference", {})
        return cls(
            id=entity["metadata"]["uuid"],
            name=status.get("name", ""),
            description=status.get("description"),
            num_sockets=resources.get("num_sockets"),
            num_vcpus_per_socket=resources.get("num_vcpus_per_socket"),
            memory_size_mib=resources.get("memory_size_mib"),
            power_state=resources.get("power_state"),
            cluster_uuid=cluster.get("uuid"),
            cluster_name=cluster.get("name"),
            subnet_uuids=[u for u in (_reference_uuid(n.get("subnet_reference")) for n in nics) if u is not None],
            image_uuid=image_uuid,
            ip_address=ip_address,
            categories=entity["metadata"].get("categories", {}),
            state=status.get("state"),
        )


class ClusterInfo(pydantic.BaseModel):
    id: str
    name: str
    external_ip: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: JsonDict) -> "ClusterInfo":
        status = entity.get("status", {})
        network = status.get("resources", {}).get("network", {})
        return cls(
            id=entity["metadata"]["uuid"],
            name=status.get("name", ""),
            external_ip=network.get("external_ip"),
            state=status.get("state"),
        )


class ClustersInfo(pydantic.BaseModel):
    entities: list[ClusterInfo] = []


class ImageInfo(pydantic.BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    image_type: Optional[str] = None
    source_uri: Optional[str] = None
    size_bytes: Optional[int] = None
    state: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: JsonDict) -> "ImageInfo":
        status = entity.get("status", {})
        resources = status.get("resources", {})
        return cls(
            id=entity["metadata"]["uuid"],
            name=status.get("name", ""),
            description=status.get("description"),
            image_type=resources.get("image_type"),
            source_uri=resources.get("source_uri"),
            size_bytes=resources.get("size_bytes"),
            state=status.get("state"),
        )


class SubnetInfo(pydantic.BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    subnet_type: Optional[str] = None
    vlan_id: Optional[int] = None
    cluster_uuid: Optional[str] = None
    subnet_ip: Optional[str] = None
    prefix_length: Optional[int] = None
    default_gateway_ip: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: JsonDict) -> "SubnetInfo":
        status = entity.get("status", {})
        resources = status.get("resources", {})
        ip_config = resources.get("ip_config", {})
        return cls(
            id=entity["metadata"]["uuid"],
            name=status.get("name", ""),
            description=status.get("description"),
            subnet_type=resources.get("subnet_type"),
            vlan_id=resources.get("vlan_id"),
            cluster_uuid=_reference_uuid(status.get("cluster_reference")),
            subnet_ip=ip_config.get("subnet_ip"),
            prefix_length=ip_config.get("prefix_length"),
            default_gateway_ip=ip_config.get("default_gateway_ip"),
            state=status.get("state"),
        )


class CategoryKeyInfo(pydantic.BaseModel):
    name: str
    description: Optional[str] = None
    system_defined: bool = False
    values: list[str] = []

    @classmethod
    def from_entity(cls, entity: JsonDict, values: Optional[list[JsonDict]] = None) -> "CategoryKeyInfo":
        return cls(
            name=entity["name"],
            description=entity.get("description"),
            system_defined=entity.get("system_defined", False),
            values=[v["value"] for v in values or []],
        )


class CategoryValueInfo(pydantic.BaseModel):
    name: str
    value: str
    description: Optional[str] = None
    system_defined: bool = False

    @classmethod
    def from_entity(cls, entity: JsonDict) -> "CategoryValueInfo":
        return cls(
            name=entity["name"],
            value=entity["value"],
            description=entity.get("description"),
            system_defined=entity.get("system_defined", False),
        )


class NetworkSecurityRuleInfo(pydantic.BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    app_rule: Optional[JsonDict] = None
    isolation_rule: Optional[JsonDict] = None
    quarantine_rule: Optional[JsonDict] = None
    categories: dict[str, str] = {}
    state: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: JsonDict) -> "NetworkSecurityRuleInfo":
        status = entity.get("status", {})
        resources = status.get("resources", {})
        return cls(
            id=entity["metadata"]["uuid"],
            name=status.get("name", ""),
            description=status.get("description"),
            app_rule=resources.get("app_rule"),
            isolation_rule=resources.get("isolation_rule"),
            quarantine_rule=resources.get("quarantine_rule"),
            categories=entity["metadata"].get("categories", {}),
            state=status.get("state"),
        )
