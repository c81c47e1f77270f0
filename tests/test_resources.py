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

from typing import Optional

import pydantic
import pytest

from nutanix_deploy.output import UNKNOWN, Output
from nutanix_deploy.provider.resources import CategoryValue, NetworkSecurityRule, Subnet, VirtualMachine
from nutanix_deploy.resources import DesiredState, Id, Resource, ResourceException, ResourceOptions, resource
from nutanix_deploy.stack import Stack


@pytest.fixture
def stack():
    stack = Stack("test")
    with stack.activate():
        yield stack


def test_resource_base(clean_registry):
    """Test whether the resource base class works"""

    class MyArgs(pydantic.BaseModel):
        key: str
        value: Optional[str] = None

    @resource("test:index/myResource:MyResource")
    class MyResource(Resource):
        Args = MyArgs
        fields = ("key", "value")
        outputs = ("created",)

    assert resource.get_class("test:index/myResource:MyResource") is MyResource
    assert MyResource.get_type_token() == "test:index/myResource:MyResource"

    with Stack("test").activate():
        res = MyResource("a", key="k")
    assert res.inputs == {"key": "k", "value": None}
    assert isinstance(res.key, Output)
    assert isinstance(res.created, Output)
    assert str(res.id) == "test:index/myResource:MyResource[test,name=a]"


def test_resource_invalid(clean_registry):
    class BadArgs(pydantic.BaseModel):
        purged: bool = False

    with pytest.raises(ResourceException):

        @resource("test:index/bad:Bad")
        class Bad(Resource):
            Args = BadArgs
            fields = ("purged",)

    with pytest.raises(ResourceException):

        @resource("test:index/missing:Missing")
        class Missing(Resource):
            fields = ("not_in_args",)

    with pytest.raises(ValueError):

        @resource("not-a-token")
        class NoToken(Resource):
            pass


def test_field_inheritance(clean_registry):
    class BaseArgs(pydantic.BaseModel):
        name: Optional[str] = None
        size: int = 1

    class Base(Resource):
        Args = BaseArgs
        fields = ("name",)
        outputs = ("state",)

    @resource("test:index/child:Child")
    class Child(Base):
        fields = ("size", "name")
        outputs = ("ip",)

    assert Child.fields == ("name", "size")
    assert Child.outputs == ("state", "ip")


def test_unregistered_resource():
    class Unregistered(Resource):
        pass

    with pytest.raises(ResourceException):
        Unregistered.get_type_token()


def test_virtual_machine(stack):
    vm = VirtualMachine(
        "vm",
        description="webserver test from pulumi",
        num_sockets=1,
        num_vcpus_per_socket=2,
        memory_size_mib=4096,
    )
    assert vm.id.entity_type == "nutanix:index/virtualMachine:VirtualMachine"
    assert vm.name_generated
    assert vm.inputs["name"].startswith("vm-")
    assert vm.inputs["num_vcpus_per_socket"] == 2
    assert vm.inputs["memory_size_mib"] == 4096
    assert vm.inputs["power_state"] == "ON"
    assert vm.inputs["subnet_uuids"] == []
    assert stack.resources == [vm]
    assert vm.dependencies == []


def test_explicit_name(stack):
    vm = VirtualMachine("vm", name="webserver")
    assert not vm.name_generated
    assert vm.inputs["name"] == "webserver"


def test_category_value_not_autonamed(stack):
    with pytest.raises(ResourceException):
        CategoryValue("env-prod", value="prod")


@pytest.mark.parametrize(
    "cls, inputs",
    [
        (VirtualMachine, {"memory_size_mib": 0}),
        (VirtualMachine, {"power_state": "SUSPENDED"}),
        (Subnet, {"cluster_uuid": "c", "vlan_id": 5000}),
        (Subnet, {"cluster_uuid": "c", "vlan_id": 10, "subnet_ip": "10.0.0.0"}),
        (NetworkSecurityRule, {}),
        (NetworkSecurityRule, {"app_rule": {}, "isolation_rule": {}}),
    ],
)
def test_invalid_inputs(stack, cls, inputs):
    with pytest.raises(ResourceException) as e:
        cls("invalid", **inputs)
    assert "Invalid input" in str(e.value)


def test_unknown_field(stack):
    with pytest.raises(ResourceException) as e:
        VirtualMachine("vm", memory=4096)
    assert "has no field(s) memory" in str(e.value)


@pytest.mark.parametrize("name", ["web]1", "a]b,name=c"])
def test_invalid_resource_name(stack, name):
    with pytest.raises(ResourceException) as e:
        VirtualMachine(name, memory_size_mib=512)
    assert "Invalid resource name" in str(e.value)
    assert stack.resources == []


def test_resource_name_with_comma(stack):
    vm = VirtualMachine("web,1")
    assert Id.parse_id(str(vm.id)) == vm.id


def test_duplicate_resource(stack):
    VirtualMachine("vm")
    with pytest.raises(ResourceException):
        VirtualMachine("vm")
    # the same logical name for another type is fine
    Subnet("vm", cluster_uuid="c", vlan_id=10)


def test_resource_without_stack():
    with pytest.raises(ResourceException):
        VirtualMachine("vm")


def test_dependencies(stack):
    subnet = Subnet("net", cluster_uuid="c", vlan_id=10)
    other = VirtualMachine("other")
    vm = VirtualMachine(
        "vm",
        subnet_uuids=[subnet.remote_id],
        cluster_uuid=subnet.cluster_uuid,
        opts=ResourceOptions(depends_on=[other]),
    )
    assert vm.dependencies == [subnet, other]
    # validation waits until the inputs are known
    assert isinstance(vm.inputs["subnet_uuids"][0], Output)


def test_depends_on_requires_resources(stack):
    vm = VirtualMachine("vm", opts=ResourceOptions(depends_on=["not a resource"]))
    with pytest.raises(ResourceException):
        vm.dependencies


def test_resolve_outputs(stack):
    vm = VirtualMachine("vm", name="webserver")
    vm.resolve_outputs({**vm.inputs, "ip_address": "10.0.0.10", "state": "COMPLETE"}, "uuid-1")
    assert vm.remote_id.result() == "uuid-1"
    assert vm.ip_address.result() == "10.0.0.10"
    assert vm.name.result() == "webserver"
    assert vm.cluster_name.result() is None


def test_resolve_unknown(stack):
    vm = VirtualMachine("vm", name="webserver")
    vm.resolve_unknown({**vm.inputs, "cluster_uuid": UNKNOWN}, None)
    assert vm.remote_id.result() is UNKNOWN
    assert vm.ip_address.result() is UNKNOWN
    assert vm.cluster_uuid.result() is UNKNOWN
    assert vm.name.result() == "webserver"

    existing = VirtualMachine("existing", name="db")
    existing.resolve_unknown({**existing.inputs, "ip_address": "10.0.0.11"}, "uuid-2")
    assert existing.ip_address.result() == "10.0.0.11"
    assert existing.state.result() is UNKNOWN


def test_fill_defaults():
    values = VirtualMachine.fill_defaults({"name": UNKNOWN, "memory_size_mib": 2048, "num_sockets": None})
    assert values["name"] is UNKNOWN
    assert values["memory_size_mib"] == 2048
    assert values["num_sockets"] == 1
    assert values["subnet_uuids"] == []


def test_desired_state():
    _id = Id("nutanix:index/virtualMachine:VirtualMachine", "dev", "vm")
    desired = DesiredState(_id, ("name", "memory_size_mib"), {"name": "vm-1", "memory_size_mib": 1024}, remote_id="u")
    assert desired["name"] == "vm-1"
    assert "memory_size_mib" in desired
    assert desired.get("unknown", "default") == "default"
    with pytest.raises(KeyError):
        desired["unknown"]

    clone = desired.clone(purged=True)
    clone.memory_size_mib = 2048
    assert desired.memory_size_mib == 1024
    assert clone.purged and not desired.purged
    assert clone.remote_id == "u"
    assert desired.serialize() == {
        "name": "vm-1",
        "memory_size_mib": 1024,
        "purged": False,
        "remote_id": "u",
        "id": "nutanix:index/virtualMachine:VirtualMachine[dev,name=vm]",
    }


def test_id_parse():
    _id = Id.parse_id("nutanix:index/virtualMachine:VirtualMachine[dev,name=vm]")
    assert _id.entity_type == "nutanix:index/virtualMachine:VirtualMachine"
    assert _id.stack == "dev"
    assert _id.resource_name == "vm"
    assert _id == Id("nutanix:index/virtualMachine:VirtualMachine", "dev", "vm")
    assert not Id.is_resource_id("vm")
    with pytest.raises(ValueError):
        Id.parse_id("nutanix:index/virtualMachine:VirtualMachine[dev]")


def test_id_alias():
    _id = Id.parse_id("nutanix:index/networkSecurityGroup:NetworkSecurityGroup[dev,name=rule]")
    assert _id.entity_type == NetworkSecurityRule.get_type_token()
    assert resource.get_class("nutanix:index/networkSecurityGroup:NetworkSecurityGroup") is NetworkSecurityRule
