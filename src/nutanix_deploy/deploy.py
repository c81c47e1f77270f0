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
import contextlib
import dataclasses
import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional, TypeVar, Union

from nutanix_deploy import config
from nutanix_deploy.const import NAME_PROPERTY, Change, ResourceAction, ResourceState
from nutanix_deploy.handler import AttributeStateChange, Commander, HandlerContext, HandlerNotAvailableException
from nutanix_deploy.output import ResourceFailedException, contains_unknown, resolve_value
from nutanix_deploy.resources import DesiredState, Id, Resource, ResourceException, resource
from nutanix_deploy.stack import Stack
from nutanix_deploy.state import ResourceRecord, StackState, StateStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K")

Program = Union[str, Callable[[], object]]

# A dependency in one of these states allows its dependents to be deployed
SUCCESS_STATES = (ResourceState.deployed, ResourceState.dry)


class DependencyCycleException(Exception):
    """Exception raised when resources depend on each other"""

    def __init__(self, cycle: Sequence[object]) -> None:
        self.cycle = list(cycle)
        super().__init__("Dependency cycle detected: %s" % " -> ".join(str(x) for x in self.cycle))


@dataclasses.dataclass
class ResourceResult:
    """The outcome of a single resource action"""

    id: str
    action: ResourceAction
    status: ResourceState
    change: Change = Change.nochange
    changes: dict[str, AttributeStateChange] = dataclasses.field(default_factory=dict)
    message: Optional[str] = None


@dataclasses.dataclass
class DeployResult:
    """The outcome of an up, preview or destroy of a stack"""

    stack: str
    action: ResourceAction
    resources: list[ResourceResult]
    outputs: dict[str, object] = dataclasses.field(default_factory=dict)
    failed_outputs: dict[str, str] = dataclasses.field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed_outputs and all(r.status in SUCCESS_STATES for r in self.resources)

    def get(self, resource_id: str) -> Optional[ResourceResult]:
        for result in self.resources:
            if result.id == resource_id:
                return result
        return None


def order_dependencies(items: Iterable[T], key: Callable[[T], K], dependencies: Callable[[T], Iterable[K]]) -> list[T]:
    """
    Order the items so that every item comes after the items it depends on. Dependencies on keys that are not part of
    the items are ignored. The original order is kept where the dependencies allow it.

    :raises DependencyCycleException: The items depend on each other
    """
    by_key: dict[K, T] = {key(item): item for item in items}
    done: set[K] = set()
    in_progress: list[K] = []
    ordered: list[T] = []

    def visit(k: K) -> None:
        if k in done:
            return
        if k in in_progress:
            raise DependencyCycleException(in_progress[in_progress.index(k) :] + [k])
        in_progress.append(k)
        for dep in dependencies(by_key[k]):
            if dep in by_key:
                visit(dep)
        in_progress.pop()
        done.add(k)
        ordered.append(by_key[k])

    for k in by_key:
        visit(k)
    return ordered


def order_resources(resources: Sequence[Resource]) -> list[Resource]:
    """
    Order the resources of a stack so dependencies come first.

    :raises ResourceException: A resource depends on a resource that is not part of the stack
    :raises DependencyCycleException: Resources depend on each other
    """
    declared = {id(r) for r in resources}
    for r in resources:
        for dep in r.dependencies:
            if id(dep) not in declared:
                raise ResourceException(f"Resource {r.id} depends on {dep.id}, which is not part of this stack")
    return order_dependencies(resources, key=id, dependencies=lambda r: [id(d) for d in r.dependencies])


def order_records(records: Sequence[ResourceRecord]) -> list[ResourceRecord]:
    return order_dependencies(records, key=lambda r: r.id, dependencies=lambda r: r.dependencies)


def _canonical_id(resource_id: str) -> str:
    if not Id.is_resource_id(resource_id):
        return resource_id
    return str(Id.parse_id(resource_id))


def adopt_aliases(state: StackState) -> StackState:
    """
    Rewrite the records that were stored under an alias type token to the current type token, so they are matched
    with the resources a program declares.
    """
    for record in state.resources:
        canonical_type = resource.canonical_name(record.type)
        if canonical_type != record.type:
            LOGGER.info("Resource %s was stored as %s, it is now managed as %s", record.id, record.type, canonical_type)
            record.type = canonical_type
        record.id = _canonical_id(record.id)
        record.dependencies = [_canonical_id(d) for d in record.dependencies]
    return state


class Deployer(object):
    """
    Deploys the resources of a stack.

    The program and the handlers run on worker threads, the deployment itself is coordinated on the event loop.
    Handlers call async code through :func:`~nutanix_deploy.deploy.Deployer.run_sync`.

    :param stack_name: The stack to work on, defaults to the ``deploy.stack`` option
    :param state_store: Where the state of the stack is kept
    :param parallelism: The number of worker threads, defaults to the ``deploy.parallelism`` option
    """

    def __init__(
        self,
        stack_name: Optional[str] = None,
        state_store: Optional[StateStore] = None,
        parallelism: Optional[int] = None,
    ) -> None:
        self.stack_name = stack_name if stack_name is not None else config.stack_name.get()
        self.state_store = state_store if state_store is not None else StateStore()
        self.parallelism = parallelism if parallelism is not None else config.deploy_parallelism.get()
        if self.parallelism < 1:
            raise ValueError(f"Parallelism should be at least 1, got {self.parallelism}")

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._sessions: dict[str, Any] = {}
        self._sessions_lock = threading.Lock()

    def run_sync(self, func: Callable[[], Awaitable[T]], timeout: Optional[float] = None) -> T:
        """
        Run the given async function on the event loop of the deployer and block the current thread until it is done.
        This can only be called from a worker thread.
        """
        if self._loop is None:
            raise Exception("The deployer is not running")
        if threading.current_thread() is self._loop_thread:
            raise Exception("run_sync can not be used on the thread of the event loop")

        async def run() -> T:
            return await func()

        return asyncio.run_coroutine_threadsafe(run(), self._loop).result(timeout)

    def get_session(self, name: str, factory: Callable[[], T]) -> T:
        """
        Get a session object (for example an API client) that is shared by all handlers during one deployment. It is
        created on first use and closed when the deployment is done.
        """
        with self._sessions_lock:
            if name not in self._sessions:
                self._sessions[name] = factory()
            return self._sessions[name]

    @contextlib.asynccontextmanager
    async def _running(self) -> AsyncIterator[None]:
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.current_thread()
        self._executor = ThreadPoolExecutor(max_workers=self.parallelism, thread_name_prefix="nutanix-deploy")
        try:
            yield
        finally:
            self._executor.shutdown(wait=False)
            for name, session in self._sessions.items():
                close = getattr(session, "close", None)
                if close is None:
                    continue
                try:
                    close()
                except Exception:
                    LOGGER.exception("Failed to close session %s", name)
            self._sessions = {}
            self._executor = None
            self._loop = None
            self._loop_thread = None

    async def _in_worker(self, func: Callable[..., T], *args: object) -> T:
        assert self._loop is not None
        return await self._loop.run_in_executor(self._executor, func, *args)

    async def load_program(self, program: Program) -> Stack:
        """
        Run the program in a worker thread and return the stack it declared.

        :param program: A Python file, a directory with a __main__.py file or a function
        """
        stack = Stack(self.stack_name)
        stack.deployer = self
        if callable(program):
            await self._in_worker(stack.run, program)
        else:
            await self._in_worker(stack.run_program, program)
        return stack

    async def _execute(self, desired: DesiredState, dry_run: bool) -> HandlerContext:
        ctx = HandlerContext(desired, dry_run=dry_run)
        try:
            handler = Commander.get_provider(self, desired)
        except HandlerNotAvailableException as e:
            ctx.set_status(ResourceState.unavailable)
            ctx.error("%(message)s", message=str(e))
            return ctx

        try:
            await self._in_worker(handler.execute, ctx, desired, dry_run)
        finally:
            handler.close()
        return ctx

    def _result(self, resource_id: object, action: ResourceAction, ctx: HandlerContext) -> ResourceResult:
        assert ctx.status is not None
        message = None
        if ctx.status not in SUCCESS_STATES:
            errors = [log.msg for log in ctx.logs if log.level >= logging.WARNING]
            message = errors[-1] if errors else None
        LOGGER.info("%s %s: %s", action.value, resource_id, ctx.status.value)
        return ResourceResult(
            id=str(resource_id),
            action=action,
            status=ctx.status,
            change=ctx.change,
            changes=dict(ctx.changes),
            message=message,
        )

    async def _deploy_resource(
        self,
        res: Resource,
        dependencies: Sequence[Awaitable[ResourceResult]],
        state: StackState,
        dry_run: bool,
    ) -> ResourceResult:
        action = ResourceAction.dryrun if dry_run else ResourceAction.deploy
        dependency_results = await asyncio.gather(*dependencies)
        failed = [r.id for r in dependency_results if r.status not in SUCCESS_STATES]
        if failed:
            LOGGER.info("Resource %s skipped due to failed dependencies: %s", res.id, failed)
            res.reject_outputs(ResourceFailedException(res.id, "was skipped because a dependency failed"))
            return ResourceResult(
                id=str(res.id),
                action=action,
                status=ResourceState.skipped,
                message=f"skipped due to failed dependencies: {', '.join(failed)}",
            )

        record = state.get_resource(str(res.id))
        try:
            values = await resolve_value(res.inputs)
            assert isinstance(values, dict)
            if res.name_generated and record is not None and record.inputs.get(NAME_PROPERTY):
                values[NAME_PROPERTY] = record.inputs[NAME_PROPERTY]
            if contains_unknown(values):
                values = res.fill_defaults(values)
            else:
                values = res.validate_inputs(values, res.id)
        except Exception as e:
            LOGGER.error("Unable to determine the input of %s: %s", res.id, e)
            res.reject_outputs(ResourceFailedException(res.id, "failed"))
            return ResourceResult(id=str(res.id), action=action, status=ResourceState.failed, message=str(e))

        desired = DesiredState(res.id, res.fields, values, remote_id=record.remote_id if record is not None else None)
        ctx = await self._execute(desired, dry_run)
        result = self._result(res.id, action, ctx)

        if ctx.status is ResourceState.deployed:
            deployed_values = {**values, **ctx.outputs}
            res.resolve_outputs(deployed_values, ctx.remote_id)
            state.set_resource(
                ResourceRecord(
                    id=str(res.id),
                    type=res.id.entity_type,
                    name=res.resource_name,
                    remote_id=ctx.remote_id,
                    inputs=values,
                    outputs={name: deployed_values.get(name) for name in res.outputs},
                    dependencies=[str(d.id) for d in res.dependencies],
                    protect=res.opts.protect,
                )
            )
        elif ctx.status is ResourceState.dry:
            exists = "purged" not in ctx.changes and ctx.remote_id is not None
            res.resolve_unknown({**values, **ctx.outputs}, ctx.remote_id if exists else None)
        else:
            res.reject_outputs(ResourceFailedException(res.id, ctx.status.value))
        return result

    async def _delete_record(self, record: ResourceRecord, state: StackState, dry_run: bool) -> ResourceResult:
        action = ResourceAction.dryrun if dry_run else ResourceAction.destroy
        if record.protect:
            LOGGER.error("Resource %s is protected and will not be deleted", record.id)
            return ResourceResult(
                id=record.id, action=action, status=ResourceState.failed, message="resource is protected"
            )

        dependents = [r.id for r in state.get_dependents(record.id)]
        if dependents:
            return ResourceResult(
                id=record.id,
                action=action,
                status=ResourceState.skipped,
                message=f"still in use by {', '.join(dependents)}",
            )

        resource_cls = resource.get_class(record.type)
        if resource_cls is None:
            return ResourceResult(
                id=record.id,
                action=action,
                status=ResourceState.unavailable,
                message=f"unknown resource type {record.type}",
            )

        desired = DesiredState(
            Id.parse_id(record.id), resource_cls.fields, record.inputs, purged=True, remote_id=record.remote_id
        )
        ctx = await self._execute(desired, dry_run)
        if ctx.status is ResourceState.deployed:
            state.remove_resource(record.id)
        return self._result(record.id, action, ctx)

    async def _delete_records(
        self, records: Sequence[ResourceRecord], state: StackState, dry_run: bool
    ) -> list[ResourceResult]:
        results = []
        for record in reversed(order_records(records)):
            results.append(await self._delete_record(record, state, dry_run))
            if dry_run:
                # a dry run deletes nothing, but the dependents of the next record would be gone
                state.remove_resource(record.id)
        return results

    async def _resolve_exports(self, stack: Stack) -> tuple[dict[str, object], dict[str, str]]:
        outputs: dict[str, object] = {}
        failures: dict[str, str] = {}
        for name, value in stack.exports.items():
            try:
                outputs[name] = await resolve_value(value)
            except Exception as e:
                LOGGER.warning("Output %s could not be determined: %s", name, e)
                failures[name] = str(e)
        return outputs, failures

    async def up(self, program: Program, dry_run: bool = False) -> DeployResult:
        """
        Run the program and bring the stack in the state it declares: create and update the declared resources and
        delete the resources of the previous deployment that are no longer declared.

        :param program: A Python file, a directory with a __main__.py file or a function that declares the resources
        :param dry_run: Only report the changes that would be made
        """
        action = ResourceAction.dryrun if dry_run else ResourceAction.deploy
        async with self._running():
            stack = await self.load_program(program)
            state = adopt_aliases(self.state_store.load(stack.name))
            ordered = order_resources(stack.resources)

            tasks: dict[int, asyncio.Task[ResourceResult]] = {}
            for res in ordered:
                tasks[id(res)] = asyncio.create_task(
                    self._deploy_resource(res, [tasks[id(d)] for d in res.dependencies], state, dry_run)
                )
            results = list(await asyncio.gather(*tasks.values()))

            declared = {str(r.id) for r in stack.resources}
            orphans = [r for r in state.resources if r.id not in declared]
            if orphans:
                LOGGER.info("Deleting %d resources that are no longer declared", len(orphans))
                results.extend(await self._delete_records(orphans, state, dry_run))

            outputs, failures = await self._resolve_exports(stack)

            if not dry_run:
                state.resources = order_records(state.resources)
                state.exports = outputs
                self.state_store.save(state)

        return DeployResult(stack=stack.name, action=action, resources=results, outputs=outputs, failed_outputs=failures)

    async def preview(self, program: Program) -> DeployResult:
        """Report what up would change, without changing anything"""
        return await self.up(program, dry_run=True)

    async def destroy(self, dry_run: bool = False) -> DeployResult:
        """
        Delete all resources of the stack, dependents before their dependencies.
        """
        action = ResourceAction.dryrun if dry_run else ResourceAction.destroy
        async with self._running():
            state = adopt_aliases(self.state_store.load(self.stack_name))
            results = await self._delete_records(list(state.resources), state, dry_run)
            if not dry_run:
                state.exports = {}
                self.state_store.save(state)
        return DeployResult(stack=self.stack_name, action=action, resources=results)
