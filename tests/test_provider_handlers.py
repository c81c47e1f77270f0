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

import itertools
import logging

import pytest
from fake_prism import CLUSTER_NAME, CLUSTER_UUID
from utils import log_contains

from nutanix_deploy import const
from nutanix_deploy.const import ResourceState
from nutanix_deploy.deploy import Deployer
from nutanix_deploy.output import UNKNOWN
from nutanix_deploy.provider import client as client_module
from nutanix_deploy.provider.resources import (
    CategoryKey,
    CategoryValue,
    Image,
    NetworkSecurityRule,
    Subnet,
    VirtualMachine,
)
from nutanix_deploy.stack import export
from nutanix_deploy.state import ResourceRecord, StackState

VM_TYPE = VirtualMachine.get_type_token()
SUBNET_TYPE = Subnet.get_type_token()


@pytest.fixture
def deployer(state_store) -> Deployer:
    return Deployer("dev", state_store)


def webserver(memory_size_mib: int = 4096, cluster_uuid=None):
    def program():
        subnet = Subnet("net", cluster_uuid=CLUSTER_UUID, vlan_id=10, subnet_ip="10.0.0.0", prefix_length=24)
        vm = VirtualMachine(
            "vm",
            description="webserver",
            num_vcpus_per_socket=2,
            memory_size_mib=memory_size_mib,
            subnet_uuids=[subnet.remote_id],
            cluster_uuid=cluster_uuid,
        )
        export("ip", vm.ip_address)
        export("cluster", vm.cluster_name)

    return program


async def test_create_vm_with_subnet(deployer, prism, state_store):
    result = await deployer.up(webserver())

    assert result.success
    assert [r.id for r in result.resources] == [f"{SUBNET_TYPE}[dev,name=net]", f"{VM_TYPE}[dev,name=vm]"]
    assert result.outputs == {"ip": "10.0.0.10", "cluster": CLUSTER_NAME}

    (subnet_uuid,) = prism.entities["subnets"]
    (vm_uuid,) = prism.entities["vms"]
    vm_spec = prism.entities["vms"][vm_uuid]["spec"]
    assert vm_spec["name"].startswith("vm-")
    assert vm_spec["description"] == "webserver"
    assert vm_spec["resources"]["num_sockets"] == 1
    assert vm_spec["resources"]["num_vcpus_per_socket"] == 2
    assert vm_spec["resources"]["memory_size_mib"] == 4096
    assert vm_spec["resources"]["power_state"] == "ON"
    assert vm_spec["resources"]["nic_list"] == [{"subnet_reference": {"kind": "subnet", "uuid": subnet_uuid}}]
    assert "cluster_reference" not in vm_spec

    subnet_spec = prism.entities["subnets"][subnet_uuid]["spec"]
    assert subnet_spec["resources"] == {
        "subnet_type": "VLAN",
        "vlan_id": 10,
        "ip_config": {"subnet_ip": "10.0.0.0", "prefix_length": 24},
    }
    assert subnet_spec["cluster_reference"] == {"kind": "cluster", "uuid": CLUSTER_UUID}

    vm_record = state_store.load("dev").get_resource(f"{VM_TYPE}[dev,name=vm]")
    assert vm_record.remote_id == vm_uuid
    assert vm_record.outputs["ip_address"] == "10.0.0.10"


async def test_update_vm(deployer, prism):
    await deployer.up(webserver())
    result = await deployer.up(webserver(memory_size_mib=8192))

    vm_result = result.get(f"{VM_TYPE}[dev,name=vm]")
    assert vm_result.change == const.Change.updated
    assert set(vm_result.changes) == {"memory_size_mib"}
    assert result.get(f"{SUBNET_TYPE}[dev,name=net]").change == const.Change.nochange

    ((_, _, body),) = prism.requests_for("PUT", "/vms/")
    assert body["spec"]["resources"]["memory_size_mib"] == 8192
    assert body["metadata"]["spec_version"] == 0
    # the ip address survives the update
    assert result.outputs["ip"] == "10.0.0.10"


async def test_update_vm_adds_nic(deployer, prism):
    """A vm that gets its first nic in an update waits for its ip address"""

    def program(with_subnet: bool):
        def declare():
            subnet_uuids = []
            if with_subnet:
                subnet_uuids = [Subnet("net", cluster_uuid=CLUSTER_UUID, vlan_id=10).remote_id]
            vm = VirtualMachine("vm", subnet_uuids=subnet_uuids)
            export("ip", vm.ip_address)

        return declare

    result = await deployer.up(program(with_subnet=False))
    assert result.outputs == {"ip": None}

    prism.ip_delay = 2
    result = await deployer.up(program(with_subnet=True))
    vm_result = result.get(f"{VM_TYPE}[dev,name=vm]")
    assert vm_result.change == const.Change.updated
    assert set(vm_result.changes) == {"subnet_uuids"}
    assert result.outputs == {"ip": "10.0.0.10"}


async def test_immutable_field(deployer, prism):
    await deployer.up(webserver(cluster_uuid=CLUSTER_UUID))
    prism.add_cluster("other-cluster", "other")
    result = await deployer.up(webserver(cluster_uuid="other-cluster"))

    vm_result = result.get(f"{VM_TYPE}[dev,name=vm]")
    assert vm_result.status == ResourceState.failed
    assert "cluster_uuid of an existing vm can not be changed" in vm_result.message
    assert "ip" in result.failed_outputs


async def test_vm_removed_outside(deployer, prism):
    await deployer.up(webserver())
    prism.entities["vms"].clear()
    result = await deployer.up(webserver())
    assert result.get(f"{VM_TYPE}[dev,name=vm]").change == const.Change.created
    assert len(prism.entities["vms"]) == 1


async def test_preview_vm(deployer, prism):
    result = await deployer.preview(webserver())
    assert result.success
    assert result.outputs == {"ip": UNKNOWN, "cluster": UNKNOWN}
    assert prism.requests == []


async def test_destroy(deployer, prism):
    await deployer.up(webserver())
    result = await deployer.destroy()
    assert result.success
    assert [r.id for r in result.resources] == [f"{VM_TYPE}[dev,name=vm]", f"{SUBNET_TYPE}[dev,name=net]"]
    assert prism.entities["vms"] == {}
    assert prism.entities["subnets"] == {}


async def test_vm_ip_timeout(deployer, prism, monkeypatch, caplog):
    prism.ip_delay = None
    clock = itertools.count(step=600)

    class FakeTime:
        @staticmethod
        def monotonic():
            return next(clock)

    monkeypatch.setattr(client_module, "time", FakeTime)
    result = await deployer.up(webserver())

    assert result.get(f"{VM_TYPE}[dev,name=vm]").status == ResourceState.deployed
    assert result.outputs["ip"] is None
    log_contains(caplog, "nutanix_deploy.handler", logging.WARNING, "No ip address was assigned")


async def test_missing_provider_configuration(deployer):
    result = await deployer.up(lambda: VirtualMachine("vm"))
    vm_result = result.resources[0]
    assert vm_result.status == ResourceState.failed
    assert "NUTANIX_ENDPOINT" in vm_result.message


async def test_image(deployer, prism):
    def program():
        image = Image("ubuntu", source_uri="http://images.example.com/ubuntu.qcow2")
        export("size", image.size_bytes)

    result = await deployer.up(program)
    assert result.outputs == {"size": 1024}
    (image,) = prism.entities["images"].values()
    assert image["spec"]["resources"] == {
        "image_type": "DISK_IMAGE",
        "source_uri": "http://images.example.com/ubuntu.qcow2",
    }


async def test_network_security_rule(deployer, prism):
    isolation_rule = {"action": "APPLY", "first_entity_filter": {"params": {"env": ["dev"]}}}

    def program():
        NetworkSecurityRule("isolate", name="isolate-dev", isolation_rule=isolation_rule, categories={"env": "dev"})

    result = await deployer.up(program)
    assert result.success
    (rule,) = prism.entities["network_security_rules"].values()
    assert rule["spec"] == {"name": "isolate-dev", "resources": {"isolation_rule": isolation_rule}}
    assert rule["metadata"]["categories"] == {"env": "dev"}


async def test_network_security_group_alias(deployer, prism, state_store):
    """Resources stored under the old type token are still managed"""
    rule_id = "nutanix:index/networkSecurityGroup:NetworkSecurityGroup[dev,name=old]"

    uuid = await client_module.NutanixClient.from_config().create_entity(
        "network_security_rules", "network_security_rule", {"name": "old", "resources": {"app_rule": {}}}
    )
    state_store.save(
        StackState(
            stack="dev",
            resources=[
                ResourceRecord(
                    id=rule_id,
                    type="nutanix:index/networkSecurityGroup:NetworkSecurityGroup",
                    name="old",
                    remote_id=uuid,
                    inputs={"name": "old", "app_rule": {}},
                )
            ],
        )
    )

    result = await deployer.up(lambda: None)
    assert result.success
    assert prism.entities["network_security_rules"] == {}


async def test_network_security_group_adopted(deployer, prism, state_store):
    """A rule stored under the old type token is matched with the same rule declared under the current token"""
    uuid = await client_module.NutanixClient.from_config().create_entity(
        "network_security_rules", "network_security_rule", {"name": "old", "resources": {"app_rule": {}}}
    )
    state_store.save(
        StackState(
            stack="dev",
            resources=[
                ResourceRecord(
                    id="nutanix:index/networkSecurityGroup:NetworkSecurityGroup[dev,name=old]",
                    type="nutanix:index/networkSecurityGroup:NetworkSecurityGroup",
                    name="old",
                    remote_id=uuid,
                    inputs={"name": "old", "app_rule": {}},
                )
            ],
        )
    )

    result = await deployer.up(lambda: NetworkSecurityRule("old", name="old", app_rule={}))

    rule_id = f"{NetworkSecurityRule.get_type_token()}[dev,name=old]"
    assert [r.id for r in result.resources] == [rule_id]
    assert result.get(rule_id).change == const.Change.nochange
    assert list(prism.entities["network_security_rules"]) == [uuid]

    (record,) = state_store.load("dev").resources
    assert record.id == rule_id
    assert record.type == NetworkSecurityRule.get_type_token()
    assert record.remote_id == uuid


async def test_categories(deployer, prism):
    def program(value: str):
        def declare():
            key = CategoryKey("tier", name="tier", description="Application tier")
            CategoryValue("value", name=key.name, value=value)

        return declare

    result = await deployer.up(program("web"))
    assert result.success
    assert prism.categories["tier"]["description"] == "Application tier"
    assert list(prism.category_values["tier"]) == ["web"]

    result = await deployer.up(program("frontend"))
    assert result.get(f"{CategoryValue.get_type_token()}[dev,name=value]").change == const.Change.updated
    assert list(prism.category_values["tier"]) == ["frontend"]

    result = await deployer.destroy()
    assert result.success
    assert prism.categories == {}
