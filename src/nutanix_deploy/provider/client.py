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

import asyncio
import json
import logging
import time
from asyncio import CancelledError
from typing import Any, Optional
from urllib.parse import quote, urlparse

from tornado.httpclient import AsyncHTTPClient, HTTPClientError, HTTPRequest, HTTPResponse

from nutanix_deploy import config
from nutanix_deploy.const import DEFAULT_PAGE_LENGTH
from nutanix_deploy.provider.config import ProviderConfig

LOGGER: logging.Logger = logging.getLogger(__name__)

JSON_CONTENT = "application/json"
API_VERSION = "3.1"

TASK_SUCCEEDED = "SUCCEEDED"
TASK_FAILED_STATES = ("FAILED", "ABORTED")


class NutanixApiError(Exception):
    """
    Prism Central returned an error.

    :param code: The http status code
    :param message: The error message(s) reported by Prism Central
    """

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"Nutanix API error {code}: {message}")
        self.code = code
        self.message = message


class NotFoundError(NutanixApiError):
    """The requested entity does not exist"""


class TaskFailedError(Exception):
    """A long running operation failed or did not finish in time"""

    def __init__(self, task_uuid: str, message: str) -> None:
        super().__init__(f"Task {task_uuid} failed: {message}")
        self.task_uuid = task_uuid
        self.message = message


def _error_message(body: Optional[bytes]) -> Optional[str]:
    if not body:
        return None
    try:
        result = json.loads(body)
    except ValueError:
        return body.decode("utf-8", errors="replace")
    if not isinstance(result, dict):
        return str(result)
    messages = [m.get("message", "") for m in result.get("message_list", []) if isinstance(m, dict)]
    if messages:
        return "; ".join(messages)
    return result.get("message") or result.get("error_detail")


class NutanixClient(object):
    """
    An async client for the Prism Central v3 REST API. The client must be used from the event loop of the deployer.

    :param provider_config: The connection settings
    """

    def __init__(self, provider_config: ProviderConfig, connection_timeout: int = 60, request_timeout: int = 120) -> None:
        self._config = provider_config
        self.connection_timeout = connection_timeout
        self.request_timeout = request_timeout

    @classmethod
    def from_config(cls) -> "NutanixClient":
        return cls(ProviderConfig.load())

    @property
    def provider_config(self) -> ProviderConfig:
        return self._config

    def _proxy_settings(self) -> dict[str, Any]:
        if self._config.proxy_url is None:
            return {}
        proxy = urlparse(self._config.proxy_url)
        return {
            "proxy_host": proxy.hostname,
            "proxy_port": proxy.port,
            "proxy_username": proxy.username,
            "proxy_password": proxy.password,
        }

    async def _fetch(self, request: HTTPRequest) -> HTTPResponse:
        client = AsyncHTTPClient()
        return await client.fetch(request)

    async def request(self, method: str, path: str, body: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Call the API and return the decoded json body.

        :raises NotFoundError: The entity does not exist
        :raises NutanixApiError: Any other error
        """
        url = self._config.base_url + path
        headers = {"Content-Type": JSON_CONTENT, "Accept": JSON_CONTENT}
        if body is None and method in ("POST", "PUT"):
            body = {}

        LOGGER.debug("Calling Prism Central %s %s", method, url)
        try:
            request = HTTPRequest(
                url=url,
                method=method,
                headers=headers,
                body=json.dumps(body) if body is not None else None,
                auth_username=self._config.username,
                auth_password=self._config.password.get_secret_value(),
                auth_mode="basic",
                validate_cert=not self._config.insecure,
                connect_timeout=self.connection_timeout,
                request_timeout=self.request_timeout,
                **self._proxy_settings(),
            )
            response = await self._fetch(request)
        except HTTPClientError as e:
            message = _error_message(e.response.body if e.response is not None else None) or str(e)
            if e.code == 404:
                raise NotFoundError(e.code, message) from e
            raise NutanixApiError(e.code, message) from e
        except CancelledError:
            raise
        except Exception as e:
            raise NutanixApiError(599, f"Failed to connect to {self._config.endpoint}: {e}") from e

        if not response.body:
            return {}
        return json.loads(response.body)

    async def wait_for_task(self, task_uuid: str) -> dict[str, Any]:
        """
        Poll a task until it succeeded.

        :raises TaskFailedError: The task failed or did not finish within the wait timeout
        """
        deadline = time.monotonic() + self._config.wait_timeout * 60
        interval = config.poll_interval.get()
        while True:
            task = await self.request("GET", f"/tasks/{task_uuid}")
            status = task.get("status")
            if status == TASK_SUCCEEDED:
                LOGGER.debug("Task %s succeeded", task_uuid)
                return task
            if status in TASK_FAILED_STATES:
                raise TaskFailedError(task_uuid, task.get("error_detail") or status)
            if time.monotonic() >= deadline:
                raise TaskFailedError(
                    task_uuid, f"did not finish within {self._config.wait_timeout} minutes, last status {status}"
                )
            await asyncio.sleep(interval)

    # Entities managed through tasks: vms, images, subnets, network_security_rules

    async def get_entity(self, path: str, uuid: str) -> dict[str, Any]:
        return await self.request("GET", f"/{path}/{uuid}")

    async def create_entity(self, path: str, kind: str, spec: dict[str, Any], categories: Optional[dict[str, str]] = None) -> str:
        """
        Create an entity and wait until it exists.

        :return: The uuid of the new entity
        """
        metadata: dict[str, Any] = {"kind": kind}
        if categories:
            metadata["categories"] = categories
        result = await self.request("POST", f"/{path}", {"api_version": API_VERSION, "metadata": metadata, "spec": spec})
        uuid = result["metadata"]["uuid"]
        await self.wait_for_task(result["status"]["execution_context"]["task_uuid"])
        LOGGER.info("Created %s %s", kind, uuid)
        return uuid

    async def update_entity(self, path: str, uuid: str, metadata: dict[str, Any], spec: dict[str, Any]) -> None:
        """
        Replace the spec of an entity. The metadata must be the metadata of the last read, Prism Central uses its
        spec_version to detect concurrent updates.
        """
        result = await self.request(
            "PUT", f"/{path}/{uuid}", {"api_version": API_VERSION, "metadata": metadata, "spec": spec}
        )
        await self.wait_for_task(result["status"]["execution_context"]["task_uuid"])

    async def delete_entity(self, path: str, uuid: str) -> None:
        result = await self.request("DELETE", f"/{path}/{uuid}")
        task_uuid = result.get("status", {}).get("execution_context", {}).get("task_uuid")
        if task_uuid is not None:
            await self.wait_for_task(task_uuid)

    async def list_entities(self, path: str, kind: str, filter: Optional[str] = None) -> list[dict[str, Any]]:
        """
        List all entities of a kind, requesting one page at a time.
        """
        entities: list[dict[str, Any]] = []
        offset = 0
        while True:
            body: dict[str, Any] = {"kind": kind, "length": DEFAULT_PAGE_LENGTH, "offset": offset}
            if filter is not None:
                body["filter"] = filter
            result = await self.request("POST", f"/{path}/list", body)
            page = result.get("entities", [])
            entities.extend(page)
            offset += len(page)
            total = result.get("metadata", {}).get("total_matches", 0)
            if not page or offset >= total:
                return entities

    async def wait_for_vm_ip(self, uuid: str) -> tuple[dict[str, Any], bool]:
        """
        Wait until the first nic of a vm has an ip address.

        :return: The last read of the vm and whether an ip address was found within the wait timeout
        """
        deadline = time.monotonic() + self._config.wait_timeout * 60
        interval = config.poll_interval.get()
        while True:
            vm = await self.get_entity("vms", uuid)
            nics = vm.get("status", {}).get("resources", {}).get("nic_list", [])
            if nics and nics[0].get("ip_endpoint_list"):
                return vm, True
            if time.monotonic() >= deadline:
                return vm, False
            await asyncio.sleep(interval)

    # Categories are not task based

    async def get_category_key(self, name: str) -> dict[str, Any]:
        return await self.request("GET", f"/categories/{quote(name, safe='')}")

    async def put_category_key(self, name: str, description: Optional[str]) -> dict[str, Any]:
        body: dict[str, Any] = {"api_version": API_VERSION, "name": name}
        if description is not None:
            body["description"] = description
        return await self.request("PUT", f"/categories/{quote(name, safe='')}", body)

    async def delete_category_key(self, name: str) -> None:
        await self.request("DELETE", f"/categories/{quote(name, safe='')}")

    async def list_category_values(self, name: str) -> list[dict[str, Any]]:
        return await self.list_entities(f"categories/{quote(name, safe='')}", "category")

    async def get_category_value(self, name: str, value: str) -> dict[str, Any]:
        return await self.request("GET", f"/categories/{quote(name, safe='')}/{quote(value, safe='')}")

    async def put_category_value(self, name: str, value: str, description: Optional[str]) -> dict[str, Any]:
        body: dict[str, Any] = {"api_version": API_VERSION, "value": value}
        if description is not None:
            body["description"] = description
        return await self.request("PUT", f"/categories/{quote(name, safe='')}/{quote(value, safe='')}", body)

    async def delete_category_value(self, name: str, value: str) -> None:
        await self.request("DELETE", f"/categories/{quote(name, safe='')}/{quote(value, safe='')}")
