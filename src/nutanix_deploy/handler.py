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

import dataclasses
import datetime
import json
import logging
import traceback
import typing
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union, overload

import nutanix_deploy
from nutanix_deploy import const
from nutanix_deploy.const import ResourceState
from nutanix_deploy.resources import DesiredState

if typing.TYPE_CHECKING:
    from nutanix_deploy.deploy import Deployer

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
SimpleTypes = Union[str, int, float, bool, None, list, dict]


class provider(object):  # noqa: N801
    """
    A decorator that registers a new handler.

    :param resource_type: The type token of the resource this handler provides an implementation for.
                          For example, ``nutanix:index/virtualMachine:VirtualMachine``
    :param name: A name to reference this provider.
    """

    def __init__(self, resource_type: str, name: str) -> None:
        self._resource_type = resource_type
        self._name = name

    def __call__(self, function):
        """
        The wrapping
        """
        Commander.add_provider(self._resource_type, self._name, function)
        return function


class SkipResource(Exception):
    """
    A handler should raise this exception when a resource should be skipped. The resource will be marked as skipped
    instead of failed.
    """


class ResourcePurged(Exception):
    """
    If the :func:`~nutanix_deploy.handler.CRUDHandler.read_resource` method raises this exception, the deployer will
    mark the current state of the resource as purged.
    """


class InvalidOperation(Exception):
    """
    This exception is raised by the context or handler methods when an invalid operation is performed.
    """


class HandlerNotAvailableException(Exception):
    """
    This exception is thrown when no single handler can be selected for a resource.
    """


@dataclasses.dataclass
class AttributeStateChange:
    current: Optional[Any] = None
    desired: Optional[Any] = None


@dataclasses.dataclass
class LogLine:
    level: int
    msg: str
    kwargs: Dict[str, object]
    timestamp: datetime.datetime

    @classmethod
    def log(cls, level: int, msg: str, **kwargs: object) -> "LogLine":
        try:
            formatted = msg % kwargs if kwargs else msg
        except (KeyError, TypeError, ValueError):
            formatted = msg
        return cls(level=level, msg=formatted, kwargs=kwargs, timestamp=datetime.datetime.now().astimezone())


class HandlerContext(object):
    """
    Context passed to handler methods for state related "things"
    """

    def __init__(
        self,
        resource: DesiredState,
        dry_run: bool = False,
        action_id: Optional[uuid.UUID] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._resource = resource
        self._dry_run = dry_run
        self._cache: Dict[str, Any] = {}

        self._purged = False
        self._updated = False
        self._created = False
        self._change = const.Change.nochange

        self._changes: Dict[str, AttributeStateChange] = {}

        if action_id is None:
            action_id = uuid.uuid4()
        self._action_id = action_id
        self._status: Optional[ResourceState] = None
        self._logs: List[LogLine] = []
        self.logger: logging.Logger
        if logger is None:
            self.logger = LOGGER
        else:
            self.logger = logger

        self._outputs: Dict[str, Any] = {}
        self._remote_id: Optional[str] = resource.remote_id

    def set_output(self, name: str, value: object) -> None:
        """
        Report the value of an attribute of the resource as it exists on the Nutanix side.

        :param name: The name of the field or output attribute.
        :param value: The actual value.
        """
        self._outputs[name] = value

    def set_outputs(self, **kwargs: object) -> None:
        self._outputs.update(kwargs)

    @property
    def outputs(self) -> Dict[str, Any]:
        return self._outputs

    def set_remote_id(self, remote_id: Optional[str]) -> None:
        """Report the id the resource has on the Nutanix side"""
        self._remote_id = remote_id

    @property
    def remote_id(self) -> Optional[str]:
        return self._remote_id

    @property
    def action_id(self) -> uuid.UUID:
        return self._action_id

    @property
    def status(self) -> Optional[ResourceState]:
        return self._status

    @property
    def logs(self) -> List[LogLine]:
        return self._logs

    def set_status(self, status: ResourceState) -> None:
        """
        Set the status of the handler operation.
        """
        self._status = status

    def is_dry_run(self) -> bool:
        """
        Is this a dryrun?
        """
        return self._dry_run

    def get(self, name: str) -> Any:
        return self._cache[name]

    def set(self, name: str, value: Any) -> None:
        self._cache[name] = value

    def set_created(self) -> None:
        self._created = True
        if self._change is not const.Change.nochange:
            raise InvalidOperation(f"Unable to set {const.Change.created} operation, {self._change} already set.")

        self._change = const.Change.created

    def set_purged(self) -> None:
        self._purged = True

        if self._change is not const.Change.nochange:
            raise InvalidOperation(f"Unable to set {const.Change.purged} operation, {self._change} already set.")

        self._change = const.Change.purged

    def set_updated(self) -> None:
        self._updated = True

        if self._change is not const.Change.nochange:
            raise InvalidOperation(f"Unable to set {const.Change.updated} operation, {self._change} already set.")

        self._change = const.Change.updated

    @property
    def changed(self) -> bool:
        return self._created or self._updated or self._purged

    @property
    def change(self) -> const.Change:
        return self._change

    def add_change(self, name: str, desired: object, current: object = None) -> None:
        """
        Report a change of a field. This field is added to the set of updated fields

        :param name: The name of the field that was updated
        :param desired: The desired value to which the field was updated (or should be updated)
        :param current: The value of the field before it was updated
        """
        self._changes[name] = AttributeStateChange(current=current, desired=desired)

    @overload
    def update_changes(self, changes: Dict[str, AttributeStateChange]) -> None: ...

    @overload
    def update_changes(self, changes: Dict[str, Dict[str, Optional[SimpleTypes]]]) -> None: ...

    @overload
    def update_changes(self, changes: Dict[str, Tuple[SimpleTypes, SimpleTypes]]) -> None: ...

    def update_changes(
        self,
        changes: Union[
            Dict[str, AttributeStateChange],
            Dict[str, Dict[str, Optional[SimpleTypes]]],
            Dict[str, Tuple[SimpleTypes, SimpleTypes]],
        ],
    ) -> None:
        """
        Update the changes list with changes

        :param changes: This should be a dict with a value a dict containing "current" and "desired" keys
        """
        for attribute, change in changes.items():
            if isinstance(change, dict):
                self._changes[attribute] = AttributeStateChange(
                    current=change.get("current", None), desired=change.get("desired", None)
                )
            elif isinstance(change, tuple):
                if len(change) != 2:
                    raise InvalidOperation(
                        f"Reported changes for {attribute} not valid. Tuple changes should contain 2 element."
                    )
                self._changes[attribute] = AttributeStateChange(current=change[0], desired=change[1])
            elif isinstance(change, AttributeStateChange):
                self._changes[attribute] = change
            else:
                raise InvalidOperation(f"Reported changes for {attribute} not in a type that is recognized.")

    @property
    def changes(self) -> Dict[str, AttributeStateChange]:
        return self._changes

    def log_msg(self, level: int, msg: str, args: Sequence[object], kwargs: Dict[str, object]) -> None:
        if len(args) > 0:
            raise Exception("Args not supported")
        if "exc_info" in kwargs:
            exc_info = kwargs.pop("exc_info")
            kwargs["traceback"] = traceback.format_exc()
        else:
            exc_info = False

        for k, v in dict(kwargs).items():
            try:
                json.dumps(v)
            except TypeError:
                if nutanix_deploy.RUNNING_TESTS:
                    # Fail the test when the value is not serializable
                    raise Exception(f"Failed to serialize argument for log message {k}={v}")
                else:
                    # In production, try to cast the non-serializable value to str to prevent the handler from failing.
                    kwargs[k] = str(v)

        log = LogLine.log(level, msg, **kwargs)
        self.logger.log(level, "resource %s: %s", self._resource.id, log.msg, exc_info=exc_info)
        self._logs.append(log)

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        """
        Log 'msg % kwargs' with severity 'DEBUG'.

        Keyword arguments should be JSON serializable.

        ``ctx.debug("Calling %(method)s", method="read_resource")``
        """
        self.log_msg(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self.log_msg(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self.log_msg(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self.log_msg(logging.ERROR, msg, args, kwargs)

    def exception(self, msg: str, *args: object, exc_info: bool = True, **kwargs: object) -> None:
        """
        Log 'msg % kwargs' with severity 'ERROR' and the traceback of the exception that is being handled.
        """
        self.log_msg(logging.ERROR, msg, args, dict(kwargs, exc_info=exc_info))


class ResourceHandler(object):
    """
    A baseclass for classes that handle resources. New handler are registered with the
    :func:`~nutanix_deploy.handler.provider` decorator.

    Handler methods run on a worker thread. Use :func:`~nutanix_deploy.handler.ResourceHandler.run_sync` to call
    async code, such as the Nutanix API client.

    :param deployer: The deployer that is executing this handler.
    """

    def __init__(self, deployer: "Deployer") -> None:
        self._deployer = deployer

    def run_sync(self, func: Callable[[], typing.Awaitable[T]], timeout: Optional[float] = None) -> T:
        """
        Run the given async function on the event loop of the deployer. It will block the current thread until the
        future resolves.

        :param func: A function that returns an awaitable.
        :return: The result of the async function.
        """
        return self._deployer.run_sync(func, timeout)

    def pre(self, ctx: HandlerContext, resource: DesiredState) -> None:
        """
        Method executed before a handler operation (facts, dryrun, real deployment, ...) is executed. Override this
        method to run before an operation.

        :param ctx: Context object to report changes and logs to the deployer.
        :param resource: The resource to query facts for.
        """

    def post(self, ctx: HandlerContext, resource: DesiredState) -> None:
        """
        Method executed after an operation. Override this method to run after an operation.

        :param ctx: Context object to report changes and logs to the deployer.
        :param resource: The resource to query facts for.
        """

    def close(self) -> None:
        pass

    def _diff(self, current: DesiredState, desired: DesiredState) -> Dict[str, Dict[str, Any]]:
        """
        Calculate the diff between the current and desired resource state.

        :param current: The current state of the resource
        :param desired: The desired state of the resource
        :return: A dict with key the name of the field and value another dict with "current" and "desired" as keys for
                 fields that require changes.
        """
        changes = {}

        # check attributes
        for field in current.fields:
            current_value = getattr(current, field)
            desired_value = getattr(desired, field)

            if current_value != desired_value and desired_value is not None:
                changes[field] = {"current": current_value, "desired": desired_value}

        return changes

    def execute(self, ctx: HandlerContext, resource: DesiredState, dry_run: bool = False) -> None:
        """
        Update the given resource. This method is called by the deployer.

        :param ctx: Context object to report changes and logs to the deployer.
        :param resource: The desired state of the resource.
        :param dry_run: True will only determine the required changes but will not execute them.
        """
        raise NotImplementedError()

    def available(self, resource: DesiredState) -> bool:
        """
        Returns true if this handler is available for the given resource

        :param resource: Is this handler available for the given resource?
        :return: Available or not?
        """
        return True


class CRUDHandler(ResourceHandler):
    """
    This handler base class requires CRUD methods to be implemented: create, read, update and delete.
    """

    def read_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        """
        This method reads the current state of the resource. It provides a copy of the resource that should be deployed,
        the method implementation should modify the attributes of this resource to the current state.

        :param ctx: Context can be used to pass value discovered in the read method to the CUD methods. For example, the
                   id used in API calls
        :param resource: A clone of the desired resource state. The read method need to set values on this object.
        :raise SkipResource: Raise this exception when the handler should skip this resource
        :raise ResourcePurged: Raise this exception when the resource does not exist yet.
        """

    def create_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        """
        This method is called by the handler when the resource should be created.

        :param context: Context can be used to get values discovered in the read method. For example, the id used in API
                        calls. This context should also be used to let the handler know what changes were made to the
                        resource.
        :param resource: The desired resource state.
        """

    def delete_resource(self, ctx: HandlerContext, resource: DesiredState) -> None:
        """
        This method is called by the handler when the resource should be deleted.

        :param ctx: Context can be used to get values discovered in the read method. For example, the id used in API
                    calls. This context should also be used to let the handler know what changes were made to the
                    resource.
        :param resource: The desired resource state.
        """

    def update_resource(self, ctx: HandlerContext, changes: Dict[str, Dict[str, Any]], resource: DesiredState) -> None:
        """
        This method is called by the handler when the resource should be updated.

        :param ctx: Context can be used to get values discovered in the read method. For example, the id used in API
                    calls. This context should also be used to let the handler know what changes were made to the
                    resource.
        :param changes: A map of resource attributes that should be changed. Each value is a dict with the current and
                        the desired value.
        :param resource: The desired resource state.
        """

    def calculate_diff(self, ctx: HandlerContext, current: DesiredState, desired: DesiredState) -> Dict[str, Dict[str, Any]]:
        """
        Calculate the diff between the current and desired resource state.

        :param ctx: Context can be used to get values discovered in the read method.
        :param current: The current state of the resource
        :param desired: The desired state of the resource
        :return: A dict with key the name of the field and value another dict with "current" and "desired" as keys for
                 fields that require changes.
        """
        return self._diff(current, desired)

    def execute(self, ctx: HandlerContext, resource: DesiredState, dry_run: Optional[bool] = None) -> None:
        """
        Update the given resource. This method is called by the deployer. Override the CRUD methods of this class.

        :param ctx: Context object to report changes and logs to the deployer.
        :param resource: The desired state of the resource.
        :param dry_run: True will only determine the required changes but will not execute them.
        """
        try:
            self.pre(ctx, resource)

            # current is clone, except for purged is set to false to prevent a bug that occurs often where the desired
            # state defines purged=true but the read_resource fails to set it to false if the resource does exist
            desired = resource
            current = desired.clone(purged=False)
            changes: Dict[str, Dict[str, Any]] = {}
            try:
                ctx.debug("Calling read_resource")
                self.read_resource(ctx, current)
                changes = self.calculate_diff(ctx, current, desired)

            except ResourcePurged:
                if not desired.purged:
                    changes["purged"] = dict(desired=desired.purged, current=True)

            else:
                if desired.purged:
                    changes = {"purged": dict(desired=True, current=False)}

            for field, values in changes.items():
                ctx.add_change(field, desired=values["desired"], current=values["current"])

            if not dry_run:
                if "purged" in changes:
                    if not changes["purged"]["desired"]:
                        ctx.debug("Calling create_resource")
                        self.create_resource(ctx, desired)
                    else:
                        ctx.debug("Calling delete_resource")
                        self.delete_resource(ctx, desired)

                elif not desired.purged and len(changes) > 0:
                    ctx.debug("Calling update_resource", changes=changes)
                    self.update_resource(ctx, dict(changes), desired)

                ctx.set_status(ResourceState.deployed)
            else:
                ctx.set_status(ResourceState.dry)

        except SkipResource as e:
            ctx.set_status(ResourceState.skipped)
            ctx.warning(msg="Resource %(resource_id)s was skipped: %(reason)s", resource_id=str(resource.id), reason=e.args)

        except Exception as e:
            ctx.set_status(ResourceState.failed)
            ctx.exception(
                "An error occurred during deployment of %(resource_id)s (exception: %(exception)s)",
                resource_id=str(resource.id),
                exception=f"{e.__class__.__name__}('{e}')",
            )
        finally:
            try:
                self.post(ctx, resource)
            except Exception as e:
                ctx.exception(
                    "An error occurred after deployment of %(resource_id)s (exception: %(exception)s",
                    resource_id=str(resource.id),
                    exception=f"{e.__class__.__name__}('{e}')",
                )


class Commander(object):
    """
    This class handles commands
    """

    __command_functions: Dict[str, Dict[str, Type[ResourceHandler]]] = defaultdict(dict)

    @classmethod
    def get_handlers(cls) -> Dict[str, Dict[str, Type[ResourceHandler]]]:
        return cls.__command_functions

    @classmethod
    def reset(cls) -> None:
        cls.__command_functions = defaultdict(dict)

    @classmethod
    def get_provider(cls, deployer: "Deployer", resource: DesiredState) -> ResourceHandler:
        """
        Return a provider to handle the given resource

        :raises HandlerNotAvailableException: none or more than one handler is available
        """
        resource_type = resource.id.entity_type

        available = []
        if resource_type in cls.__command_functions:
            for handlr in cls.__command_functions[resource_type].values():
                h = handlr(deployer)
                if h.available(resource):
                    available.append(h)
                else:
                    h.close()

        if len(available) > 1:
            for h in available:
                h.close()

            raise HandlerNotAvailableException("More than one handler selected for resource %s" % resource.id)

        elif len(available) == 1:
            return available[0]

        raise HandlerNotAvailableException("No resource handler registered for resource of type %s" % resource_type)

    @classmethod
    def add_provider(cls, resource: str, name: str, provider: Type["ResourceHandler"]) -> None:
        """
        Register a new provider

        :param resource: the type token of the resource this handler applies to
        :param name: the name of the handler itself
        :param provider: the handler class
        """
        if resource in cls.__command_functions and name in cls.__command_functions[resource]:
            del cls.__command_functions[resource][name]

        cls.__command_functions[resource][name] = provider

    @classmethod
    def get_providers(cls) -> typing.Iterator[Tuple[str, Type["ResourceHandler"]]]:
        """Return an iterator over resource type, handler definition"""
        for resource_type, handler_map in cls.__command_functions.items():
            for handler_class in handler_map.values():
                yield (resource_type, handler_class)

    @classmethod
    def get_provider_class(cls, resource_type: str, name: str) -> Optional[Type["ResourceHandler"]]:
        """
        Return the class of the handler for the given type and with the given name
        """
        if resource_type not in cls.__command_functions:
            return None

        if name not in cls.__command_functions[resource_type]:
            return None

        return cls.__command_functions[resource_type][name]
