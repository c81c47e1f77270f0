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

import re
import secrets
from typing import NewType

from nutanix_deploy import const

ModuleMember = NewType("ModuleMember", str)
"""<package>:<module>:<member>, for example nutanix:index/getCluster:getCluster"""

TypeToken = NewType("TypeToken", str)
"""A module member that identifies a resource type, for example nutanix:index/virtualMachine:VirtualMachine"""

TOKEN_REGEX = re.compile(r"^(?P<package>[A-Za-z0-9_-]+):(?P<module>[A-Za-z0-9_./-]+):(?P<member>[A-Za-z_][A-Za-z0-9_]*)$")


def make_member(mod: str, mem: str) -> ModuleMember:
    """
    Manufacture a module member token for the main package and the given module and member.
    """
    return ModuleMember(f"{const.PACKAGE_NAME}:{mod}:{mem}")


def make_type(mod: str, typ: str) -> TypeToken:
    """
    Manufacture a type token for the main package and the given module and type.
    """
    return TypeToken(make_member(mod, typ))


def _lower_first(name: str) -> str:
    return name[0].lower() + name[1:]


def make_data_source(mod: str, res: str) -> ModuleMember:
    """
    Manufacture a standard data source token given a module and function name. The module part is the given module
    followed by the function name with its first character lower cased.
    """
    return make_member(mod + "/" + _lower_first(res), res)


def make_resource(mod: str, res: str) -> TypeToken:
    """
    Manufacture a standard resource token given a module and resource name. The module part is the given module
    followed by the resource name with its first character lower cased.
    """
    return make_type(mod + "/" + _lower_first(res), res)


def parse_token(token: str) -> tuple[str, str, str]:
    """
    Split a token in its package, module and member parts.

    :raises ValueError: when the token is not well-formed
    """
    match = TOKEN_REGEX.match(token)
    if match is None:
        raise ValueError(f"Invalid token {token!r}, expected <package>:<module>:<member>")
    return match.group("package"), match.group("module"), match.group("member")


def auto_name(logical_name: str, max_length: int = const.AUTONAME_MAX_LENGTH) -> str:
    """
    Derive a physical name from the logical name of a resource: the logical name followed by a dash and random hex
    characters. When the result is longer than max_length, the logical name is shortened.
    """
    suffix = "-" + secrets.token_hex(4)[: const.AUTONAME_RANDOM_LENGTH]
    if max_length <= len(suffix):
        raise ValueError(f"Maximal name length {max_length} does not leave room for the random suffix")
    return logical_name[: max_length - len(suffix)] + suffix
