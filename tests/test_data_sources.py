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

import pytest
from fake_prism import CLUSTER_NAME, CLUSTER_UUID

import nutanix_deploy
from nutanix_deploy.deploy import Deployer
from nutanix_deploy.provider.data_sources import data_source
from nutanix_deploy.resources import ResourceException
from nutanix_deploy.stack import ProgramException, Stack, export


@pytest.fixture
def deployer(state_store) -> Deployer:
    return Deployer("dev", state_store)


def test_registered_data_sources():
    data_sources = data_source.get_data_sources()
    assert data_sources["nutanix:index/getCluster:getCluster"] is nutanix_deploy.get_cluster
    assert nutanix_deploy.get_virtual_machine.token == "nutanix:index/getVirtualMachine:getVirtualMachine"
    assert len(data_sources) == 7


async def test_get_cluster(deployer, prism):
    prism.add_cluster("second-uuid", "second")

    def program():
        by_name = nutanix_deploy.get_cluster(name="second")
        by_id = nutanix_deploy.get_cluster(cluster_id=CLUSTER_UUID)
        export("by_name", by_name.id)
        export("by_id", by_id.name)
        export("external_ip", by_id.external_ip)
        export("all", sorted(c.name for c in nutanix_deploy.get_clusters().entities))

    result = await deployer.up(program)
    assert result.outputs == {
        "by_name": "second-uuid",
        "by_id": CLUSTER_NAME,
        "external_ip": "10.0.0.2",
        "all": [CLUSTER_NAME, "second"],
    }


async def test_get_cluster_arguments(deployer, prism):
    with pytest.raises(ProgramException) as e:
        await deployer.up(lambda: nutanix_deploy.get_cluster())
    assert "Exactly one of cluster_id and name" in str(e.value)

    with pytest.raises(ProgramException) as e:
        await deployer.up(lambda: nutanix_deploy.get_cluster(name="does-not-exist"))
    assert "No cluster with name does-not-exist" in str(e.value)


async def test_cluster_feeds_resource(deployer, prism):
    """A data source result is a plain value that can be used as input"""

    def program():
        cluster = nutanix_deploy.get_cluster(name=CLUSTER_NAME)
        vm = nutanix_deploy.VirtualMachine("vm", cluster_uuid=cluster.id)
        export("cluster", vm.cluster_name)

    result = await deployer.up(program)
    assert result.outputs == {"cluster": CLUSTER_NAME}


async def test_get_entities(deployer, prism):
    def create():
        vm = nutanix_deploy.VirtualMachine("vm", name="existing-vm", memory_size_mib=2048)
        image = nutanix_deploy.Image("image", name="existing-image", source_uri="http://images.example.com/a.iso")
        subnet = nutanix_deploy.Subnet("subnet", name="existing-subnet", cluster_uuid=CLUSTER_UUID, vlan_id=5)
        export("vm", vm.remote_id)
        export("image", image.remote_id)
        export("subnet", subnet.remote_id)

    uuids = (await deployer.up(create)).outputs

    def lookup():
        export("vm", nutanix_deploy.get_virtual_machine(uuids["vm"]).memory_size_mib)
        export("image", nutanix_deploy.get_image(uuids["image"]).name)
        export("subnet", nutanix_deploy.get_subnet(uuids["subnet"]).vlan_id)

    result = await Deployer("lookup", deployer.state_store).up(lookup)
    assert result.outputs == {"vm": 2048, "image": "existing-image", "subnet": 5}


async def test_get_category_key(deployer, prism):
    def create():
        key = nutanix_deploy.CategoryKey("key", name="env")
        for value in ("dev", "prod"):
            nutanix_deploy.CategoryValue(value, name=key.name, value=value)

    await deployer.up(create)

    def lookup():
        key = nutanix_deploy.get_category_key("env")
        export("values", sorted(key.values))

    result = await Deployer("lookup", deployer.state_store).up(lookup)
    assert result.outputs == {"values": ["dev", "prod"]}


async def test_get_network_security_rule(deployer, prism):
    def create():
        rule = nutanix_deploy.NetworkSecurityRule("rule", name="quarantine", quarantine_rule={"action": "APPLY"})
        export("id", rule.remote_id)

    rule_id = (await deployer.up(create)).outputs["id"]

    def lookup():
        export("rule", nutanix_deploy.get_network_security_rule(rule_id).quarantine_rule)

    result = await Deployer("lookup", deployer.state_store).up(lookup)
    assert result.outputs == {"rule": {"action": "APPLY"}}


def test_data_source_without_deployer():
    with Stack("dev").activate():
        with pytest.raises(ResourceException):
            nutanix_deploy.get_clusters()
