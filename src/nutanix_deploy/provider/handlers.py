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

import copy
import logging
from typing import Any, ClassVar, Dict, Optional

import pydantic

from nutanix_deploy.handler import CRUDHandler, HandlerContext, InvalidOperation, ResourcePurged, provider
from nutanix_deploy.provider.client import NotFoundError, NutanixClient
from nutanix_deploy.provider.models import (
    CategoryKeyInfo,
    CategoryValueInfo,
    ImageInfo,
    NetworkSecurityRuleInfo,
    SubnetInfo,
    VirtualMachineInfo,
)
from nutanix_deploy.provider.resources import (
    CategoryKey,
    CategoryValue,
    Image,
    NetworkSecurityRule,
    Subnet,
    VirtualMachine,
)
from nutanix_deploy.resources import DesiredState, Resource

LOGGER = logging.getLogger(__name__)

# The name under which the api client is shared between handlers and data sources
SESSION_NAME = "nutanix"
HANDLER_NAME = "nutanix"


def get_client(deployer: Any) -> NutanixClient:
    return deployer.get_session(SESSION_NAME, NutanixClient.from_config)


class NutanixHandler(CRUDHandler):
    """
    Base handler for Prism Central entities. Entities are identified by their uuid, which is kept as the remote id of
    the resource.
    """

    resource_type: ClassVar[type[Resource]]

    def __init__(self, deployer: Any) -> None:
        super().__init__(deployer)
        self._client: Optional[NutanixClient] = None

    @property
    def client(self) -> NutanixClient:
        if self._client is None:
            self._client = get_client(self._deployer)
        return self._client

    def report(self, ctx: HandlerContext, resource: DesiredState, info: pydantic.BaseModel) -> None:
        """Copy the fields of the info model to the resource and its outputs to the context"""
        for field in resource.fields:
            setattr(resource, field, getattr(info, field))
        ctx.set_outputs(**{name: getattr(info, name) for name in self.resource_type.outputs})


class EntityHandler(NutanixHandler):
    """
    Handler for entities that Prism Central creates, updates and deletes with a task.
    """

    path: ClassVar[str]
    kind: ClassVar[str]
    info: ClassVar[Any]
    # Fields that can only be set on creation
    immutable: ClassVar[tuple[str, ...]] = ()

    def build_spec(self, resource: DesiredState) -> Dict[str, Any]:
        raise NotImplementedError()

    def update_spec(self, spec: Dict[str, Any], resource: DesiredState, changes: Dict[str, Dict[str, Any]]) -> None:
        """Modify the spec of the last read to match the desired state"""
        spec["name"] = resource.name
        if resource.description is not None:
            spec["description"] = resource.description

    def get_categories(self, resource: DesiredState) -> Optional[Dict[str, str]]:
        return resource.get("categories")

    def read_entity(self, ctx: HandlerContext, resource: DesiredState, uuid: str) -> Dict[str, Any]:
        entity = self.run_sync(lambda: self.client.get_entity(self.path, uuid))
        self.report(ctx, resource, self.info.from_entity(entity))
        return entity

    def read_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        if resource.remote_id is None:
            raise ResourcePurged()
        try:
            entity = self.read_entity(ctx, resource, resource.remote_id)
        except NotFoundError:
            raise ResourcePurged()
        ctx.set("entity", entity)

    def create_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        spec = self.build_spec(resource)
        categories = self.get_categories(resource)
        uuid = self.run_sync(lambda: self.client.create_entity(self.path, self.kind, spec, categories))
        ctx.set_remote_id(uuid)
        ctx.set_created()
        self.read_entity(ctx, resource.clone(), uuid)

    def update_resource(self, ctx: HandlerContext, changes: Dict[str, Dict[str, Any]], resource: DesiredState) -> None:
        for field in self.immutable:
            if field in changes:
                raise InvalidOperation(f"{field} of an existing {self.kind} can not be changed")

        entity = ctx.get("entity")
        metadata = copy.deepcopy(entity["metadata"])
        spec = copy.deepcopy(entity["spec"])
        self.update_spec(spec, resource, changes)
        categories = self.get_categories(resource)
        if categories is not None:
            metadata["categories"] = categories

        uuid = ctx.remote_id
        assert uuid is not None
        self.run_sync(lambda: self.client.update_entity(self.path, uuid, metadata, spec))
        ctx.set_updated()
        self.read_entity(ctx, resource.clone(), uuid)

    def delete_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        uuid = ctx.remote_id
        assert uuid is not None
        self.run_sync(lambda: self.client.delete_entity(self.path, uuid))
        ctx.set_purged()


def _reference(kind: str, uuid: str) -> Dict[str, str]:
    return {"kind": kind, "uuid": uuid}


@provider(VirtualMachine.get_type_token(), name=HANDLER_NAME)
class VirtualMachineHandler(EntityHandler):
    resource_type = VirtualMachine
    path = "vms"
    kind = "vm"
    info = VirtualMachineInfo
    immutable = ("cluster_uuid", "image_uuid")

    def build_spec(self, resource: DesiredState) -> Dict[str, Any]:
        resources: Dict[str, Any] = {
            "num_sockets": resource.num_sockets,
            "num_vcpus_per_socket": resource.num_vcpus_per_socket,
            "memory_size_mib": resource.memory_size_mib,
            "power_state": resource.power_state,
            "nic_list": [{"subnet_reference": _reference("subnet", uuid)} for uuid in resource.subnet_uuids or []],
        }
        if resource.image_uuid is not None:
            resources["disk_list"] = [
                {
                    "data_source_reference": _reference("image", resource.image_uuid),
                    "device_properties": {"device_type": "DISK"},
                }
            ]
        spec: Dict[str, Any] = {"name": resource.name, "resources": resources}
        if resource.description is not None:
            spec["description"] = resource.description
        if resource.cluster_uuid is not None:
            spec["cluster_reference"] = _reference("cluster", resource.cluster_uuid)
        return spec

    def update_spec(self, spec: Dict[str, Any], resource: DesiredState, changes: Dict[str, Dict[str, Any]]) -> None:
        super().update_spec(spec, resource, changes)
        resources = spec.setdefault("resources", {})
        for field in ("num_sockets", "num_vcpus_per_socket", "memory_size_mib", "power_state"):
            resources[field] = resource[field]
        if "subnet_uuids" in changes:
            resources["nic_list"] = [
                {"subnet_reference": _reference("subnet", uuid)} for uuid in resource.subnet_uuids or []
            ]

    def wait_for_ip(self, ctx: HandlerContext, resource: DesiredState) -> None:
        """Wait until a running vm with nics has an ip address and report it"""
        if not resource.subnet_uuids or resource.power_state != "ON":
            return

        uuid = ctx.remote_id
        assert uuid is not None
        ctx.info("Waiting for an ip address on %(uuid)s", uuid=uuid)
        entity, found = self.run_sync(lambda: self.client.wait_for_vm_ip(uuid))
        if not found:
            ctx.warning(
                "No ip address was assigned to %(uuid)s within %(timeout)d minutes",
                uuid=uuid,
                timeout=self.client.provider_config.wait_timeout,
            )
        self.report(ctx, resource.clone(), VirtualMachineInfo.from_entity(entity))

    def create_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        super().create_resource(ctx, resource)
        self.wait_for_ip(ctx, resource)

    def update_resource(self, ctx: HandlerContext, changes: Dict[str, Dict[str, Any]], resource: DesiredState) -> None:
        super().update_resource(ctx, changes, resource)
        if "subnet_uuids" in changes or "power_state" in changes:
            self.wait_for_ip(ctx, resource)


@provider(Image.get_type_token(), name=HANDLER_NAME)
class ImageHandler(EntityHandler):
    resource_type = Image
    path = "images"
    kind = "image"
    info = ImageInfo
    immutable = ("source_uri", "image_type")

    def build_spec(self, resource: DesiredState) -> Dict[str, Any]:
        spec: Dict[str, Any] = {
            "name": resource.name,
            "resources": {"image_type": resource.image_type, "source_uri": resource.source_uri},
        }
        if resource.description is not None:
            spec["description"] = resource.description
        return spec


@provider(Subnet.get_type_token(), name=HANDLER_NAME)
class SubnetHandler(EntityHandler):
    resource_type = Subnet
    path = "subnets"
    kind = "subnet"
    info = SubnetInfo
    immutable = ("cluster_uuid", "vlan_id")

    def _ip_config(self, resource: DesiredState) -> Optional[Dict[str, Any]]:
        if resource.subnet_ip is None:
            return None
        ip_config: Dict[str, Any] = {"subnet_ip": resource.subnet_ip, "prefix_length": resource.prefix_length}
        if resource.default_gateway_ip is not None:
            ip_config["default_gateway_ip"] = resource.default_gateway_ip
        return ip_config

    def build_spec(self, resource: DesiredState) -> Dict[str, Any]:
        resources: Dict[str, Any] = {"subnet_type": "VLAN", "vlan_id": resource.vlan_id}
        ip_config = self._ip_config(resource)
        if ip_config is not None:
            resources["ip_config"] = ip_config
        spec: Dict[str, Any] = {
            "name": resource.name,
            "resources": resources,
            "cluster_reference": _reference("cluster", resource.cluster_uuid),
        }
        if resource.description is not None:
            spec["description"] = resource.description
        return spec

    def update_spec(self, spec: Dict[str, Any], resource: DesiredState, changes: Dict[str, Dict[str, Any]]) -> None:
        super().update_spec(spec, resource, changes)
        ip_config = self._ip_config(resource)
        if ip_config is not None:
            spec.setdefault("resources", {})["ip_config"] = ip_config


@provider(NetworkSecurityRule.get_type_token(), name=HANDLER_NAME)
class NetworkSecurityRuleHandler(EntityHandler):
    resource_type = NetworkSecurityRule
    path = "network_security_rules"
    kind = "network_security_rule"
    info = NetworkSecurityRuleInfo

    def _rules(self, resource: DesiredState) -> Dict[str, Any]:
        return {
            rule: resource[rule]
            for rule in ("app_rule", "isolation_rule", "quarantine_rule")
            if resource[rule] is not None
        }

    def build_spec(self, resource: DesiredState) -> Dict[str, Any]:
        spec: Dict[str, Any] = {"name": resource.name, "resources": self._rules(resource)}
        if resource.description is not None:
            spec["description"] = resource.description
        return spec

    def update_spec(self, spec: Dict[str, Any], resource: DesiredState, changes: Dict[str, Dict[str, Any]]) -> None:
        super().update_spec(spec, resource, changes)
        spec["resources"] = self._rules(resource)


@provider(CategoryKey.get_type_token(), name=HANDLER_NAME)
class CategoryKeyHandler(NutanixHandler):
    """
    Category keys are identified by their name. Renaming a key creates the new key and removes the old one.
    """

    resource_type = CategoryKey

    def read_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        name = resource.remote_id or resource.name
        try:
            entity = self.run_sync(lambda: self.client.get_category_key(name))
        except NotFoundError:
            raise ResourcePurged()
        ctx.set_remote_id(name)
        self.report(ctx, resource, CategoryKeyInfo.from_entity(entity))

    def create_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        entity = self.run_sync(lambda: self.client.put_category_key(resource.name, resource.description))
        ctx.set_remote_id(resource.name)
        ctx.set_created()
        self.report(ctx, resource.clone(), CategoryKeyInfo.from_entity(entity))

    def update_resource(self, ctx: HandlerContext, changes: Dict[str, Dict[str, Any]], resource: DesiredState) -> None:
        old_name = ctx.remote_id
        entity = self.run_sync(lambda: self.client.put_category_key(resource.name, resource.description))
        if "name" in changes and old_name is not None:
            self.run_sync(lambda: self.client.delete_category_key(old_name))
        ctx.set_remote_id(resource.name)
        ctx.set_updated()
        self.report(ctx, resource.clone(), CategoryKeyInfo.from_entity(entity))

    def delete_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        name = ctx.remote_id or resource.name
        self.run_sync(lambda: self.client.delete_category_key(name))
        ctx.set_purged()


@provider(CategoryValue.get_type_token(), name=HANDLER_NAME)
class CategoryValueHandler(NutanixHandler):
    """
    Category values are identified by ``<key>/<value>``. Changing the key or the value creates the new value and removes
    the old one.
    """

    resource_type = CategoryValue

    def _split(self, ctx: HandlerContext, resource: DesiredState) -> tuple[str, str]:
        if ctx.remote_id is not None:
            name, _, value = ctx.remote_id.partition("/")
            return name, value
        return resource.name, resource.value

    def read_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        name, value = self._split(ctx, resource)
        try:
            entity = self.run_sync(lambda: self.client.get_category_value(name, value))
        except NotFoundError:
            raise ResourcePurged()
        ctx.set_remote_id(f"{name}/{value}")
        self.report(ctx, resource, CategoryValueInfo.from_entity(entity))

    def create_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        entity = self.run_sync(
            lambda: self.client.put_category_value(resource.name, resource.value, resource.description)
        )
        ctx.set_remote_id(f"{resource.name}/{resource.value}")
        ctx.set_created()
        self.report(ctx, resource.clone(), CategoryValueInfo.from_entity(entity))

    def update_resource(self, ctx: HandlerContext, changes: Dict[str, Dict[str, Any]], resource: DesiredState) -> None:
        old_name, old_value = self._split(ctx, resource)
        entity = self.run_sync(
            lambda: self.client.put_category_value(resource.name, resource.value, resource.description)
        )
        if "name" in changes or "value" in changes:
            self.run_sync(lambda: self.client.delete_category_value(old_name, old_value))
        ctx.set_remote_id(f"{resource.name}/{resource.value}")
        ctx.set_updated()
        self.report(ctx, resource.clone(), CategoryValueInfo.from_entity(entity))

    def delete_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        name, value = self._split(ctx, resource)
        self.run_sync(lambda: self.client.delete_category_value(name, value))
        ctx.set_purged()
