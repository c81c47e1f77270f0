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
import threading
import typing
from concurrent.futures import Future
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar, Union

if typing.TYPE_CHECKING:
    from nutanix_deploy.resources import Resource

T = TypeVar("T")
U = TypeVar("U")


class Unknown(object):
    """
    An instance of this class is used to indicate that this value can not be determined yet. This happens during a
    preview for attributes that the provider only knows after the resource was created.
    """

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Unknown)

    def __hash__(self) -> int:
        return hash(Unknown)

    def __repr__(self) -> str:
        return "<unknown>"


UNKNOWN = Unknown()


class ResourceFailedException(Exception):
    """
    The value of an output can not be determined because the resource that produces it failed or was skipped.
    """

    def __init__(self, resource_id: object, reason: str) -> None:
        super().__init__(f"Resource {resource_id} {reason}")
        self.resource_id = resource_id
        self.reason = reason


class Output(Generic[T]):
    """
    A value that becomes known at some point in the future, typically after the resource that produces it has been
    deployed. Outputs can be consumed from any thread.

    :param resources: The resources this value depends on.
    """

    def __init__(self, resources: Iterable["Resource"] = ()) -> None:
        self._future: Future[T] = Future()
        self._resources: set["Resource"] = set(resources)
        self._lock = threading.Lock()

    @property
    def resources(self) -> frozenset["Resource"]:
        with self._lock:
            return frozenset(self._resources)

    def _add_resources(self, resources: Iterable["Resource"]) -> None:
        with self._lock:
            self._resources.update(resources)

    def resolve(self, value: Union[T, Unknown]) -> None:
        """
        Set the value of this output. Resolving an output twice is ignored.
        """
        if not self._future.done():
            self._future.set_result(value)

    def reject(self, exception: BaseException) -> None:
        """
        Fail this output and everything that is derived from it.
        """
        if not self._future.done():
            self._future.set_exception(exception)

    def is_resolved(self) -> bool:
        return self._future.done()

    def is_known(self) -> bool:
        """True when this output has a value that is not unknown"""
        return self._future.done() and self._future.exception() is None and not isinstance(self._future.result(), Unknown)

    def result(self, timeout: Optional[float] = None) -> Union[T, Unknown]:
        """
        Block the current thread until the value is known. Do not call this on the thread of the event loop.
        """
        return self._future.result(timeout)

    async def future(self) -> Union[T, Unknown]:
        """Wait for the value from asyncio code"""
        return await asyncio.wrap_future(self._future)

    def _chain(self, source: Future) -> None:
        def copy(done: Future) -> None:
            exception = done.exception()
            if exception is not None:
                self.reject(exception)
            else:
                self.resolve(done.result())

        source.add_done_callback(copy)

    def apply(self, func: Callable[[T], Union[U, "Output[U]"]]) -> "Output[U]":
        """
        Transform the value of this output once it is known. When the value is unknown, func is not called and the
        result is unknown as well. When func returns an output, the result follows that output.
        """
        derived: Output[U] = Output(self.resources)

        def on_done(done: Future) -> None:
            exception = done.exception()
            if exception is not None:
                derived.reject(exception)
                return
            value = done.result()
            if isinstance(value, Unknown):
                derived.resolve(value)
                return
            try:
                result = func(value)
            except Exception as e:
                derived.reject(e)
                return
            if isinstance(result, Output):
                derived._add_resources(result.resources)
                derived._chain(result._future)
            else:
                derived.resolve(result)

        self._future.add_done_callback(on_done)
        return derived

    @classmethod
    def from_input(cls, value: Union[T, "Output[T]"]) -> "Output[T]":
        """Lift a plain value into a resolved output. Outputs are returned unchanged."""
        if isinstance(value, Output):
            return value
        out: Output[T] = cls()
        out.resolve(value)
        return out

    @classmethod
    def all(cls, *values: object) -> "Output[list[Any]]":
        """
        Combine outputs and plain values into a single output of a list. The result is unknown when any of the inputs
        is unknown and fails when any of the inputs fails.
        """
        outputs = [cls.from_input(v) for v in values]
        combined: Output[list[Any]] = cls(r for o in outputs for r in o.resources)
        if not outputs:
            combined.resolve([])
            return combined

        remaining = [len(outputs)]
        lock = threading.Lock()

        def on_done(_: Future) -> None:
            with lock:
                remaining[0] -= 1
                if remaining[0] > 0:
                    return
            for o in outputs:
                exception = o._future.exception()
                if exception is not None:
                    combined.reject(exception)
                    return
            result = [o._future.result() for o in outputs]
            if any(isinstance(v, Unknown) for v in result):
                combined.resolve(UNKNOWN)
            else:
                combined.resolve(result)

        for o in outputs:
            o._future.add_done_callback(on_done)
        return combined

    @classmethod
    def concat(cls, *parts: object) -> "Output[str]":
        """Concatenate strings and outputs of strings"""
        return cls.all(*parts).apply(lambda values: "".join(str(v) for v in values))

    def __repr__(self) -> str:
        if not self._future.done():
            return "Output(<pending>)"
        if self._future.exception() is not None:
            return f"Output(<failed: {self._future.exception()}>)"
        return f"Output({self._future.result()!r})"


def collect_outputs(value: object) -> list[Output[Any]]:
    """
    Find all outputs in a value, looking inside lists, tuples and dicts.
    """
    if isinstance(value, Output):
        return [value]
    if isinstance(value, dict):
        return [o for v in value.values() for o in collect_outputs(v)]
    if isinstance(value, (list, tuple)):
        return [o for v in value for o in collect_outputs(v)]
    return []


def contains_unknown(value: object) -> bool:
    if isinstance(value, Unknown):
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(v) for v in value)
    return False


async def resolve_value(value: object) -> object:
    """
    Replace all outputs in a value by their resolved values. Tuples become lists.
    """
    if isinstance(value, Output):
        return await resolve_value(await value.future())
    if isinstance(value, dict):
        return {k: await resolve_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [await resolve_value(v) for v in value]
    return value
