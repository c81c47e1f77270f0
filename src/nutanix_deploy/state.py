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

import datetime
import logging
import os
import tempfile
from typing import Any, Optional

import pydantic

from nutanix_deploy import config, const

LOGGER = logging.getLogger(__name__)


class ResourceRecord(pydantic.BaseModel):
    """
    The last known state of a deployed resource
    """

    id: str
    type: str
    name: str
    remote_id: Optional[str] = None
    inputs: dict[str, Any] = {}
    outputs: dict[str, Any] = {}
    dependencies: list[str] = []
    protect: bool = False


class StackState(pydantic.BaseModel):
    """
    Everything that is known about a stack after its last deployment. Resources are kept in the order in which they
    were deployed, so a dependency always comes before the resources that depend on it.
    """

    stack: str
    version: int = 0
    updated: Optional[datetime.datetime] = None
    resources: list[ResourceRecord] = []
    exports: dict[str, Any] = {}

    def get_resource(self, resource_id: str) -> Optional[ResourceRecord]:
        for record in self.resources:
            if record.id == resource_id:
                return record
        return None

    def set_resource(self, record: ResourceRecord) -> None:
        """Add a record or replace the record with the same id, keeping its position"""
        for i, existing in enumerate(self.resources):
            if existing.id == record.id:
                self.resources[i] = record
                return
        self.resources.append(record)

    def remove_resource(self, resource_id: str) -> None:
        self.resources = [r for r in self.resources if r.id != resource_id]

    def get_dependents(self, resource_id: str) -> list[ResourceRecord]:
        return [r for r in self.resources if resource_id in r.dependencies]


class StateStore(object):
    """
    Stores the state of each stack in a json file in the state directory.

    :param state_dir: The directory to use, defaults to the ``config.state_dir`` option.
    """

    def __init__(self, state_dir: Optional[str] = None) -> None:
        self.state_dir = state_dir if state_dir is not None else config.state_dir.get()

    def path_for(self, stack: str) -> str:
        return os.path.join(self.state_dir, stack + const.STATE_FILE_SUFFIX)

    def load(self, stack: str) -> StackState:
        """
        Load the state of the given stack. A stack that was never deployed has an empty state.
        """
        path = self.path_for(stack)
        if not os.path.exists(path):
            LOGGER.debug("No state found for stack %s at %s", stack, path)
            return StackState(stack=stack)

        with open(path, "r", encoding="utf-8") as fh:
            return StackState.model_validate_json(fh.read())

    def save(self, state: StackState) -> None:
        """
        Write the state of a stack. The file is replaced atomically, a crash never leaves a partial state file behind.
        """
        os.makedirs(self.state_dir, exist_ok=True)
        state.version += 1
        state.updated = datetime.datetime.now().astimezone()

        fd, tmp_path = tempfile.mkstemp(dir=self.state_dir, prefix=f".{state.stack}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(state.model_dump_json(indent=2))
            os.replace(tmp_path, self.path_for(state.stack))
        except Exception:
            os.unlink(tmp_path)
            raise
        LOGGER.debug("Saved version %d of the state of stack %s", state.version, state.stack)

    def list_stacks(self) -> list[str]:
        if not os.path.isdir(self.state_dir):
            return []
        return sorted(
            f[: -len(const.STATE_FILE_SUFFIX)]
            for f in os.listdir(self.state_dir)
            if f.endswith(const.STATE_FILE_SUFFIX) and not f.startswith(".")
        )
