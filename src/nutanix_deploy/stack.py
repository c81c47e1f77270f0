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

import contextlib
import logging
import os
import runpy
import sys
import threading
import typing
from collections.abc import Callable, Iterator
from typing import Optional

from nutanix_deploy.resources import ResourceException

if typing.TYPE_CHECKING:
    from nutanix_deploy.deploy import Deployer
    from nutanix_deploy.resources import Id, Resource

LOGGER = logging.getLogger(__name__)


class ProgramException(Exception):
    """
    Running a program failed. The original exception is available as the cause.
    """


class Stack(object):
    """
    A named collection of resources and the values exported by the program that declared them.

    There is at most one current stack: the one a program is running against. Resources that are created register
    themselves with it.
    """

    __current: Optional["Stack"] = None
    __lock = threading.Lock()

    def __init__(self, name: str) -> None:
        if not name or "," in name or "]" in name:
            raise ResourceException(f"Invalid stack name {name!r}, a stack name can not be empty or contain ',' or ']'")
        self.name = name
        self._resources: dict["Id", "Resource"] = {}
        self._exports: dict[str, object] = {}
        self.deployer: Optional["Deployer"] = None

    @classmethod
    def get_current(cls) -> "Stack":
        if cls.__current is None:
            raise ResourceException("Resources and exports can only be declared while a program runs against a stack")
        return cls.__current

    @classmethod
    def has_current(cls) -> bool:
        return cls.__current is not None

    @contextlib.contextmanager
    def activate(self) -> Iterator["Stack"]:
        """Make this the current stack for the duration of the context"""
        with Stack.__lock:
            if Stack.__current is not None:
                raise ProgramException(f"Stack {Stack.__current.name} is already active")
            Stack.__current = self
        try:
            yield self
        finally:
            Stack.__current = None

    def register_resource(self, resource: "Resource") -> None:
        if resource.id in self._resources:
            raise ResourceException(f"Duplicate resource {resource.id}: a resource with this type and name already exists")
        LOGGER.debug("Registered resource %s", resource.id)
        self._resources[resource.id] = resource

    @property
    def resources(self) -> list["Resource"]:
        """All resources in declaration order"""
        return list(self._resources.values())

    def get_resource(self, resource_id: "Id") -> Optional["Resource"]:
        return self._resources.get(resource_id)

    def export(self, name: str, value: object) -> None:
        if name in self._exports:
            LOGGER.warning("Output %s is exported more than once, the last value is used", name)
        self._exports[name] = value

    @property
    def exports(self) -> dict[str, object]:
        return dict(self._exports)

    def _run(self, name: str, program: Callable[[], object]) -> None:
        try:
            with self.activate():
                program()
        except ProgramException:
            raise
        except Exception as e:
            raise ProgramException(f"Program {name} failed: {e.__class__.__name__}: {e}") from e
        LOGGER.info("Program declared %d resources and %d outputs", len(self._resources), len(self._exports))

    def run(self, program: Callable[[], object]) -> None:
        """
        Run a program that is given as a function against this stack.

        :raises ProgramException: The program raised an exception.
        """
        LOGGER.info("Running program %s against stack %s", program.__name__, self.name)
        self._run(program.__name__, program)

    def run_program(self, path: str) -> None:
        """
        Run a program against this stack. The program is either a Python file or a directory with a __main__.py file.

        :raises ProgramException: The program does not exist or raised an exception.
        """
        if os.path.isdir(path):
            main_file = os.path.join(path, "__main__.py")
            program_dir = path
        else:
            main_file = path
            program_dir = os.path.dirname(path) or "."

        if not os.path.isfile(main_file):
            raise ProgramException(f"Program {path} not found, expected a Python file or a directory with __main__.py")

        LOGGER.info("Running program %s against stack %s", main_file, self.name)
        # allow the program to import its own modules
        sys.path.insert(0, os.path.abspath(program_dir))
        try:
            self._run(main_file, lambda: runpy.run_path(main_file, run_name="__main__"))
        finally:
            sys.path.remove(os.path.abspath(program_dir))


def export(name: str, value: object) -> None:
    """
    Export a value from the program. The value can be a plain value or an :class:`~nutanix_deploy.output.Output`.
    """
    Stack.get_current().export(name, value)


def get_stack() -> str:
    """Return the name of the stack the program runs against"""
    return Stack.get_current().name

