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

import logging
import os
from collections import abc, defaultdict
from configparser import ConfigParser, Interpolation
from typing import Callable, Dict, Generic, List, Optional, Sequence, TypeVar, Union, overload

from nutanix_deploy import const

LOGGER = logging.getLogger(__name__)


def _normalize_name(name: str) -> str:
    return name.replace("_", "-")


def _get_from_env(section: str, name: str) -> Optional[str]:
    return os.environ.get(f"{const.ENV_VAR_PREFIX}_{section}_{name}".replace("-", "_").upper(), default=None)


class LenientConfigParser(ConfigParser):
    def optionxform(self, name: str) -> str:
        name = _normalize_name(name)
        return super(LenientConfigParser, self).optionxform(name)


class Config(object):
    __instance: Optional[ConfigParser] = None
    _config_dir: Optional[str] = None  # The directory this config was loaded from
    __config_definition: Dict[str, Dict[str, "Option"]] = defaultdict(lambda: {})

    @classmethod
    def get_config_options(cls) -> Dict[str, Dict[str, "Option"]]:
        return cls.__config_definition

    @classmethod
    def load_config(
        cls,
        min_c_config_file: Optional[str] = None,
        config_dir: Optional[str] = "/etc/nutanix-deploy/conf.d",
        main_cfg_file: str = f"/etc/nutanix-deploy/{const.CONFIG_FILE_NAME}",
    ) -> None:
        """
        Load the configuration file
        """

        cfg_files_in_config_dir: List[str]
        if config_dir and os.path.isdir(config_dir):
            cfg_files_in_config_dir = sorted(
                [os.path.join(config_dir, f) for f in os.listdir(config_dir) if f.endswith(".cfg")]
            )
        else:
            cfg_files_in_config_dir = []

        local_dot_cfg_files: List[str] = [
            os.path.expanduser("~/.nutanix-deploy.cfg"),
            ".nutanix-deploy",
            ".nutanix-deploy.cfg",
        ]

        # Files with a higher index in the list, override config options defined by files with a lower index
        files: List[str] = [main_cfg_file] + cfg_files_in_config_dir + local_dot_cfg_files
        if min_c_config_file is not None:
            files.append(min_c_config_file)

        config = LenientConfigParser(interpolation=Interpolation())
        loaded = config.read(files)
        LOGGER.debug("Loaded configuration from %s", loaded)
        cls.__instance = config
        cls._config_dir = config_dir

    @classmethod
    def _get_instance(cls) -> ConfigParser:
        if cls.__instance is None:
            cls.load_config()

        return cls.__instance

    @classmethod
    def _reset(cls) -> None:
        cls.__instance = None
        cls._config_dir = None

    @overload
    @classmethod
    def get(cls) -> ConfigParser: ...

    @overload
    @classmethod
    def get(cls, section: str, name: str, default_value: Optional[str] = None) -> Optional[str]: ...

    @classmethod
    def get(
        cls, section: Optional[str] = None, name: Optional[str] = None, default_value: Optional[str] = None
    ) -> Union[str, ConfigParser]:
        """
        Get the entire config or get a value directly
        """
        cfg = cls._get_instance()
        if section is None:
            return cfg

        assert name is not None
        name = _normalize_name(name)

        opt = cls.validate_option_request(section, name, default_value)
        if opt is not None:
            return opt.get()

        val = _get_from_env(section, name)
        if val is not None:
            LOGGER.debug(f"Setting {section}:{name} was set using an environment variable")
            return val
        return cfg.get(section, name, fallback=default_value)

    @classmethod
    def is_set(cls, section: str, name: str) -> bool:
        """Check if a certain config option was specified in the config file."""
        name = _normalize_name(name)
        return section in cls._get_instance() and name in cls._get_instance()[section]

    @classmethod
    def set(cls, section: str, name: str, value: str) -> None:
        """
        Override a value
        """
        name = _normalize_name(name)

        if section not in cls._get_instance():
            cls._get_instance().add_section(section)
        cls._get_instance().set(section, name, value)

    @classmethod
    def register_option(cls, option: "Option") -> None:
        cls.__config_definition[option.section][option.name] = option

    @classmethod
    def validate_option_request(cls, section: str, name: str, default_value: Optional[str]) -> Optional["Option"]:
        if section not in cls.__config_definition:
            LOGGER.warning("Config section %s not defined" % (section))
            return None
        if name not in cls.__config_definition[section]:
            LOGGER.warning("Config name %s not defined in section %s" % (name, section))
            return None
        opt = cls.__config_definition[section][name]
        if default_value is not None and opt.get_default_value() != default_value:
            LOGGER.warning(
                "Inconsistent default value for option %s.%s: defined as %s, got %s"
                % (section, name, opt.default, default_value)
            )

        return opt


def is_int(value: str) -> int:
    """int"""
    return int(value)


def is_float(value: str) -> float:
    """float"""
    return float(value)


def is_bool(value: Union[bool, str]) -> bool:
    """Boolean value, represented as any of true, false, on, off, yes, no, 1, 0. (Case-insensitive)"""
    if isinstance(value, bool):
        return value
    boolean_states: abc.Mapping[str, bool] = Config._get_instance().BOOLEAN_STATES
    if value.lower() not in boolean_states:
        raise ValueError("Not a boolean: %s" % value)
    return boolean_states[value.lower()]


def is_str(value: str) -> str:
    """str"""
    return str(value)


def is_str_opt(value: Optional[str]) -> Optional[str]:
    """optional str"""
    if value is None:
        return None
    return str(value)


T = TypeVar("T")


class Option(Generic[T]):
    """
    Defines an option and exposes it for use

    All config option should be define prior to use
    For the document generator to work properly, they should be defined at the module level.

    The value is looked up in this order: the ``NUTANIX_DEPLOY_<SECTION>_<NAME>`` environment variable, the config files,
    the environment variables listed in ``env_vars`` and finally the default.

    :param section: section in the config file
    :param name: name of the option
    :param default: default value for this option
        the default value is either a value or a function.
        If it is a value, `str(default)` will be used a default value.
        If it is a function, its doc string will be used to represent the value in documentation.
        and its return value as the actual default value
    :param documentation: the documentation for this option
    :param validator: a function responsible for turning the string representation of the option into the correct type.
        Its docstring is used as representation for the type of the option.
    :param env_vars: environment variables that provide a value when the option is not configured.
    :param secret: do not show the value when the configuration is displayed.
    """

    def __init__(
        self,
        section: str,
        name: str,
        default: Union[T, None, Callable[[], T]],
        documentation: str,
        validator: Callable[[str], T] = is_str,
        env_vars: Sequence[str] = (),
        secret: bool = False,
    ) -> None:
        self.section = section
        self.name = _normalize_name(name)
        self.validator = validator
        self.documentation = documentation
        self.default = default
        self.env_vars = list(env_vars)
        self.secret = secret
        Config.register_option(self)

    def get(self) -> T:
        val = _get_from_env(self.section, self.name)
        if val is not None:
            LOGGER.debug(f"Setting {self.section}:{self.name} was set using an environment variable")
            return self.validate(val)

        cfg = Config._get_instance()
        if cfg.has_option(self.section, self.name):
            return self.validate(cfg.get(self.section, self.name))

        for env_var in self.env_vars:
            val = os.environ.get(env_var)
            if val is not None:
                return self.validate(val)

        return self.validate(self.get_default_value())

    def is_set(self) -> bool:
        """Is this option set explicitly, either in a file or in the environment?"""
        if _get_from_env(self.section, self.name) is not None or Config.is_set(self.section, self.name):
            return True
        return any(env_var in os.environ for env_var in self.env_vars)

    def get_type(self) -> Optional[str]:
        if callable(self.validator):
            return self.validator.__doc__
        return None

    def get_default_desc(self) -> str:
        defa = self.default
        if callable(defa):
            return "%s" % defa.__doc__
        else:
            return str(defa)

    def validate(self, value: Optional[str]) -> T:
        if value is None:
            return None
        return self.validator(value)

    def get_default_value(self) -> Optional[T]:
        defa = self.default
        if callable(defa):
            return defa()
        else:
            return defa

    def set(self, value: str) -> None:
        """Only for tests"""
        Config.set(self.section, self.name, value)


#############################
# Config
#
# Global config options are defined here
#############################
def get_default_state_dir() -> str:
    """~/.nutanix-deploy/state"""
    return os.path.expanduser(os.path.join("~", ".nutanix-deploy", "state"))


state_dir = Option("config", "state_dir", get_default_state_dir, "The directory where the stack state files are stored", is_str)


#############################
# Deploy
#############################
stack_name = Option("deploy", "stack", "dev", "The name of the stack to deploy when none is given on the command line", is_str)

deploy_parallelism = Option(
    "deploy", "parallelism", 10, "The maximal number of resources that are deployed at the same time", is_int
)

poll_interval = Option(
    "deploy", "poll_interval", 2.0, "The time in seconds between two status checks of a long running operation", is_float
)
