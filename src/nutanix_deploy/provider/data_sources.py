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
from collections.abc import Awaitable
from typing import Callable, Optional, TypeVar

from nutanix_deploy.const import MAIN_MODULE
from nutanix_deploy.provider.client import NutanixClient
from nutanix_deploy.provider.handlers import get_client
from nutanix_deploy.provider.models import (
    CategoryKeyInfo,
    ClusterInfo,
    ClustersInfo,
    ImageInfo,
    NetworkSecurityRuleInfo,
    SubnetInfo,
    VirtualMachineInfo,
)
from nutanix_deploy.resources import ResourceException
from nutanix_deploy.stack import Stack
from nutanix_deploy.tokens import ModuleMember, make_data_source

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., object])


class data_source(object):  # noqa: N801
    """
    A decorator that registers a function that reads information from Prism Central while a program runs.

    :param name: The name of the function in the main module, for example ``getCluster``
    """

    __data_sources: dict[ModuleMember, Callable[..., object]] = {}

    def __init__(self, name: str) -> None:
        self._token = make_data_source(MAIN_MODULE, name)

    def __call__(self, function: F) -> F:
        data_source.__data_sources[self._token] = function
        setattr(function, "token", self._token)
        return function

    @classmethod
    def get_data_sources(cls) -> dict[ModuleMember, Callable[..., object]]:
        return dict(cls.__data_sources)


def _call(func: Callable[[NutanixClient], Awaitable[T]]) -> T:
    """
    Run an api call on the event loop of the deployer that runs the current program and wait for the result.
    """
    deployer = Stack.get_current().deployer
    if deployer is None:
        raise ResourceException("Data sources can only be used in a program that is run by the deployer")
    client = get_client(deployer)
    return deployer.run_sync(lambda: func(client))


@data_source("getVirtualMachine")
def get_virtual_machine(vm_id: str) -> VirtualMachineInfo:
    """Look up a virtual machine by its uuid"""
    return VirtualMachineInfo.from_entity(_call(lambda client: client.get_entity("vms", vm_id)))


@data_source("getCluster")
def get_cluster(cluster_id: Optional[str] = None, name: Optional[str] = None) -> ClusterInfo:
    """
    Look up a cluster by its uuid or by its name. Exactly one of both should be given.

    :raises ValueError: Neither or both of cluster_id and name are given
    :raises ResourceException: No cluster has the given name
    """
    if (cluster_id is None) == (name is None):
        raise ValueError("Exactly one of cluster_id and name should be given")

    if cluster_id is not None:
        return ClusterInfo.from_entity(_call(lambda client: client.get_entity("clusters", cluster_id)))

    for cluster in get_clusters().entities:
        if cluster.name == name:
            return cluster
    raise ResourceException(f"No cluster with name {name} found")


@data_source("getClusters")
def get_clusters() -> ClustersInfo:
    """List all clusters registered with Prism Central"""
    entities = _call(lambda client: client.list_entities("clusters", "cluster"))
    return ClustersInfo(entities=[ClusterInfo.from_entity(e) for e in entities])


@data_source("getImage")
def get_image(image_id: str) -> ImageInfo:
    return ImageInfo.from_entity(_call(lambda client: client.get_entity("images", image_id)))


@data_source("getSubnet")
def get_subnet(subnet_id: str) -> SubnetInfo:
    return SubnetInfo.from_entity(_call(lambda client: client.get_entity("subnets", subnet_id)))


@data_source("getCategoryKey")
def get_category_key(name: str) -> CategoryKeyInfo:
    """Look up a category key and its values"""

    async def read(client: NutanixClient) -> CategoryKeyInfo:
        entity = await client.get_category_key(name)
        values = await client.list_category_values(name)
        return CategoryKeyInfo.from_entity(entity, values)

    return _call(read)


@data_source("getNetworkSecurityRule")
def get_network_security_rule(network_security_rule_id: str) -> NetworkSecurityRuleInfo:
    return NetworkSecurityRuleInfo.from_entity(
        _call(lambda client: client.get_entity("network_security_rules", network_security_rule_id))
    )
