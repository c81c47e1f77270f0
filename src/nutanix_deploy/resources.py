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
import dataclasses
import logging
import re
from collections.abc import Iterator, Sequence
from typing import Any, ClassVar, Optional, TypeVar

import pydantic

from nutanix_deploy import const, tokens
from nutanix_deploy.output import UNKNOWN, Output, collect_outputs, contains_unknown

LOGGER = logging.getLogger(__name__)

R = TypeVar("R", bound="Resource")


class ResourceException(Exception):
    pass


class resource:  # noqa: N801
    """
    A decorator that registers a new resource type. The decorator must be applied to classes that inherit from
    :class:`~nutanix_deploy.resources.Resource`

    :param name: The type token of the resource, for example ``nutanix:index/virtualMachine:VirtualMachine``
    :param aliases: Older type tokens of the same resource type. These are accepted when reading a stack state.
    """

    _resources: dict[str, type["Resource"]] = {}
    _aliases: dict[str, str] = {}

    def __init__(self, name: str, aliases: Sequence[str] = ()) -> None:
        tokens.parse_token(name)
        self._cls_name = name
        self._alias_names = list(aliases)

    def __call__(self, cls: type[R]) -> type[R]:
        """
        The wrapping
        """
        if self._cls_name in resource._resources:
            LOGGER.info("Reloading resource type %s" % self._cls_name)
            del resource._resources[self._cls_name]

        cls.validate()
        cls._token = self._cls_name
        resource._resources[self._cls_name] = cls
        for alias in self._alias_names:
            resource._aliases[alias] = self._cls_name
        return cls

    @classmethod
    def get_class(cls, name: str) -> Optional[type["Resource"]]:
        """
        Get the class definition for the given type token or one of its aliases.
        """
        name = cls._aliases.get(name, name)
        return cls._resources.get(name)

    @classmethod
    def canonical_name(cls, name: str) -> str:
        """Translate an alias into the current type token"""
        return cls._aliases.get(name, name)

    @classmethod
    def reset(cls) -> None:
        """
        Clear the list of registered resources
        """
        cls._resources = {}
        cls._aliases = {}


class ResourceMeta(type):
    @classmethod
    def _get_parent_attribute(cls, bases: Sequence[type], attribute: str) -> list[str]:
        values: list[str] = []
        for base in bases:
            if attribute in base.__dict__:
                if not isinstance(base.__dict__[attribute], (tuple, list)):
                    raise Exception(f"{attribute} attribute of {base} should be a tuple or list")

                values.extend(base.__dict__[attribute])

            values.extend(cls._get_parent_attribute(base.__bases__, attribute))

        return values

    def __new__(cls, class_name, bases, dct):
        for attribute in ("fields", "outputs"):
            values = cls._get_parent_attribute(bases, attribute)
            if attribute in dct:
                if not isinstance(dct[attribute], (tuple, list)):
                    raise Exception(f"{attribute} attribute of {class_name} should be a tuple or list")

                values.extend(dct[attribute])

            # keep declaration order, drop duplicates
            dct[attribute] = tuple(dict.fromkeys(values))
        return type.__new__(cls, class_name, bases, dct)


RESERVED_FOR_RESOURCE = {
    "id",
    "opts",
    "remote_id",
    "resource_name",
    "dependencies",
    "purged",
    "fields",
    "outputs",
    "inputs",
    "name_generated",
}


@dataclasses.dataclass
class ResourceOptions:
    """
    Options that control how a resource is managed, rather than what it looks like.

    :param depends_on: Resources that must be deployed before this resource, in addition to the resources whose outputs
        are used as input.
    :param protect: Refuse to delete this resource.
    """

    depends_on: Sequence["Resource"] = ()
    protect: bool = False


class EmptyArgs(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="forbid")


class Resource(metaclass=ResourceMeta):
    """
    Base class of all resource types. A resource is declared by creating an instance in a program:

    .. code-block:: python

        vm = VirtualMachine("vm", memory_size_mib=4096)

    The handle that is returned exposes every input and output attribute as an :class:`~nutanix_deploy.output.Output`.

    :param resource_name: The logical name of the resource, unique per type within a stack.
    :param opts: Options that control how the resource is managed.
    :param inputs: The desired values for the fields of this resource type.
    """

    fields: ClassVar[tuple[str, ...]] = ()
    outputs: ClassVar[tuple[str, ...]] = ()
    Args: ClassVar[type[pydantic.BaseModel]] = EmptyArgs
    _token: ClassVar[Optional[str]] = None
    # Generate a name when the name field is not set
    autonamed: ClassVar[bool] = True

    @classmethod
    def validate(cls) -> None:
        for field in cls.fields + cls.outputs:
            if field.startswith("_"):
                raise ResourceException("Resource field names can not start with _, reported in %s" % cls.__name__)
            if field in RESERVED_FOR_RESOURCE:
                raise ResourceException(
                    f"Resource {field} is a reserved keyword and not a valid field name, reported in {cls.__name__}"
                )
        missing = set(cls.fields) - set(cls.Args.model_fields)
        if missing:
            raise ResourceException(f"Fields {sorted(missing)} of {cls.__name__} are not part of its Args model")

    @classmethod
    def get_type_token(cls) -> str:
        if cls._token is None:
            raise ResourceException(f"Resource class {cls.__name__} is not registered with the @resource decorator")
        return cls._token

    @classmethod
    def validate_inputs(cls, values: dict[str, object], resource_id: object = None) -> dict[str, object]:
        """
        Validate resolved input values against the Args model of this resource type and fill in the defaults.

        :raises ResourceException: The values are not valid
        """
        try:
            model = cls.Args.model_validate({k: v for k, v in values.items() if v is not None})
        except pydantic.ValidationError as e:
            name = resource_id if resource_id is not None else cls.__name__
            raise ResourceException(f"Invalid input for {name}: {e}") from e
        return model.model_dump()

    @classmethod
    def fill_defaults(cls, values: dict[str, object]) -> dict[str, object]:
        """Fill in the defaults of the Args model for inputs that were not given, without validating"""
        result = dict(values)
        for name, field in cls.Args.model_fields.items():
            if result.get(name) is None and not field.is_required():
                result[name] = field.get_default(call_default_factory=True)
        return result

    def __init__(self, resource_name: str, opts: Optional[ResourceOptions] = None, **inputs: object) -> None:
        from nutanix_deploy.stack import Stack

        if not resource_name:
            raise ResourceException("A resource requires a non-empty name")

        unknown_fields = set(inputs) - set(self.fields)
        if unknown_fields:
            raise ResourceException(f"{self.__class__.__name__} has no field(s) {', '.join(sorted(unknown_fields))}")

        stack = Stack.get_current()
        self.resource_name = resource_name
        self.opts = opts if opts is not None else ResourceOptions()
        self.id = Id(self.get_type_token(), stack.name, resource_name)
        if not Id.is_resource_id(str(self.id)):
            raise ResourceException(f"Invalid resource name {resource_name!r}, a name can not contain ']'")

        values: dict[str, object] = {field: inputs.get(field) for field in self.fields}
        # A generated name is replaced by the name of the previous deployment, if there is one
        self.name_generated = False
        if self.autonamed and const.NAME_PROPERTY in self.fields and values[const.NAME_PROPERTY] is None:
            values[const.NAME_PROPERTY] = tokens.auto_name(resource_name)
            self.name_generated = True

        if not collect_outputs(values):
            # Everything is known already, fail before anything gets deployed
            values = self.validate_inputs(values, self.id)
        self.inputs: dict[str, object] = values

        self.remote_id: Output[Optional[str]] = Output([self])
        for name in self.fields + self.outputs:
            setattr(self, name, Output([self]))

        stack.register_resource(self)

    @property
    def dependencies(self) -> list["Resource"]:
        """The resources that have to be deployed before this one, in declaration order of discovery"""
        found: dict[int, Resource] = {}
        for output in collect_outputs(self.inputs):
            for dependency in output.resources:
                found[id(dependency)] = dependency
        for dependency in self.opts.depends_on:
            if not isinstance(dependency, Resource):
                raise ResourceException(f"depends_on of {self.id} should only contain resources, got {dependency!r}")
            found[id(dependency)] = dependency
        found.pop(id(self), None)
        return list(found.values())

    def get_output(self, name: str) -> Output[Any]:
        if name not in self.fields and name not in self.outputs:
            raise KeyError(name)
        return getattr(self, name)

    def resolve_outputs(self, values: dict[str, object], remote_id: Optional[str]) -> None:
        """Publish the deployed state of this resource to its outputs"""
        self.remote_id.resolve(remote_id)
        for name in self.fields + self.outputs:
            self.get_output(name).resolve(values.get(name))

    def resolve_unknown(self, values: dict[str, object], remote_id: Optional[str]) -> None:
        """
        Publish the state of this resource during a preview: inputs are known when they were known before deployment,
        outputs are only known when the resource exists already.
        """
        self.remote_id.resolve(remote_id if remote_id is not None else UNKNOWN)
        for name in self.fields:
            value = values.get(name)
            self.get_output(name).resolve(UNKNOWN if contains_unknown(value) else value)
        for name in self.outputs:
            self.get_output(name).resolve(values[name] if remote_id is not None and name in values else UNKNOWN)

    def reject_outputs(self, exception: Exception) -> None:
        self.remote_id.reject(exception)
        for name in self.fields + self.outputs:
            self.get_output(name).reject(exception)

    def __str__(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return str(self)


class DesiredState(object):
    """
    The resolved state of a resource as it is passed to a handler. Handlers read the desired values from the attributes
    named after the fields and modify a clone of it to report the current state.

    :param _id: The id of the resource
    :param fields: The names of the fields
    :param values: The resolved value of each field
    :param purged: The resource should not exist
    :param remote_id: The id of the resource on the Nutanix side, when it is known
    """

    def __init__(
        self,
        _id: "Id",
        fields: Sequence[str],
        values: dict[str, object],
        purged: bool = False,
        remote_id: Optional[str] = None,
    ) -> None:
        self.id = _id
        self.fields = tuple(fields)
        for field in self.fields:
            setattr(self, field, values.get(field))
        self.purged = purged
        self.remote_id = remote_id

    def get(self, key: str, default: object = None) -> object:
        if key in self.fields:
            return getattr(self, key)
        return default

    def __getitem__(self, key: str) -> object:
        """Support dict like access on the resource"""
        if key in self.fields:
            return getattr(self, key)

        raise KeyError(key)

    def __contains__(self, item: str) -> bool:
        return item in self.fields

    def items(self) -> Iterator[tuple[str, object]]:
        for key in self.fields:
            yield key, getattr(self, key)

    def clone(self, **kwargs: Any) -> "DesiredState":
        """
        Create a clone of this state. The given kwargs can be used to override attributes.

        :return: The cloned state
        """
        res = DesiredState(
            self.id, self.fields, copy.deepcopy(dict(self.items())), purged=self.purged, remote_id=self.remote_id
        )
        for k, v in kwargs.items():
            setattr(res, k, v)
        return res

    def serialize(self) -> dict[str, object]:
        """
        Serialize this state to its dictionary representation
        """
        dictionary: dict[str, object] = dict(self.items())
        dictionary["purged"] = self.purged
        dictionary["remote_id"] = self.remote_id
        dictionary["id"] = str(self.id)
        return dictionary

    def __str__(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return str(self)


PARSE_ID_REGEX = re.compile(
    r"^(?P<type>[A-Za-z0-9_-]+:[A-Za-z0-9_./-]+:[A-Za-z_][A-Za-z0-9_]*)\[(?P<stack>[^,\]]+),name=(?P<name>[^\]]+)\]$"
)


class Id:
    """
    A unique id that identifies a resource within all stacks:

        <type>[<stack>,name=<name>]

    :attr entity_type: The type token of the resource.
    :attr stack: The name of the stack the resource belongs to.
    :attr resource_name: The logical name of the resource.
    """

    def __init__(self, entity_type: str, stack: str, resource_name: str) -> None:
        self._entity_type = entity_type
        self._stack = stack
        self._resource_name = resource_name

    def get_entity_type(self) -> str:
        return self._entity_type

    def get_stack(self) -> str:
        return self._stack

    def get_resource_name(self) -> str:
        return self._resource_name

    def resource_str(self) -> str:
        return f"{self._entity_type}[{self._stack},name={self._resource_name}]"

    def __str__(self) -> str:
        return self.resource_str()

    def __repr__(self) -> str:
        return str(self)

    def __hash__(self) -> int:
        return hash(str(self))

    def __eq__(self, other: object) -> bool:
        return str(self) == str(other) and type(self) is type(other)

    def __lt__(self, other: "Id") -> bool:
        return str(self) < str(other)

    @classmethod
    def parse_id(cls, resource_id: str) -> "Id":
        """
        Parse a resource id. Alias type tokens are translated into the current token.

        :raises ValueError: The string is not a valid resource id
        """
        result = PARSE_ID_REGEX.search(resource_id)

        if result is None:
            raise ValueError("Invalid id for resource %s" % resource_id)

        return Id(resource.canonical_name(result.group("type")), result.group("stack"), result.group("name"))

    @classmethod
    def is_resource_id(cls, value: str) -> bool:
        """
        Check whether the given value is a resource id
        """
        return PARSE_ID_REGEX.search(value) is not None

    entity_type = property(get_entity_type)
    stack = property(get_stack)
    resource_name = property(get_resource_name)
