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
from typing import Optional

import pydantic

from nutanix_deploy import const
from nutanix_deploy.config import Option, is_bool, is_int, is_str_opt

LOGGER = logging.getLogger(__name__)

SECTION = "nutanix"

#############################
# Nutanix provider
#############################
username = Option(
    SECTION,
    "username",
    None,
    "User name for the Nutanix Prism Central account",
    is_str_opt,
    env_vars=["NUTANIX_USERNAME"],
)

password = Option(
    SECTION,
    "password",
    None,
    "Password for the Nutanix Prism Central account",
    is_str_opt,
    env_vars=["NUTANIX_PASSWORD"],
    secret=True,
)

endpoint = Option(
    SECTION,
    "endpoint",
    None,
    "Host name or IP address of Prism Central",
    is_str_opt,
    env_vars=["NUTANIX_ENDPOINT"],
)

port = Option(SECTION, "port", const.DEFAULT_PORT, "Port of the Prism Central API", is_int, env_vars=["NUTANIX_PORT"])

proxy_url = Option(
    SECTION, "proxy_url", None, "Proxy to use for the API calls, e.g. http://proxy:3128", is_str_opt, env_vars=["NUTANIX_PROXY_URL"]
)

insecure = Option(
    SECTION,
    "insecure",
    False,
    "Do not validate the certificate of Prism Central",
    is_bool,
    env_vars=["NUTANIX_INSECURE"],
)

wait_timeout = Option(
    SECTION,
    "wait_timeout",
    const.DEFAULT_WAIT_TIMEOUT,
    "The number of minutes to wait for a long running operation before giving up",
    is_int,
    env_vars=["NUTANIX_WAIT_TIMEOUT"],
)


class ProviderConfigurationError(Exception):
    """The provider configuration is incomplete or invalid"""


class ProviderConfig(pydantic.BaseModel):
    """
    The settings required to connect to Prism Central.
    """

    endpoint: str
    username: str
    password: pydantic.SecretStr
    port: pydantic.PositiveInt = const.DEFAULT_PORT
    proxy_url: Optional[str] = None
    insecure: bool = False
    wait_timeout: pydantic.PositiveInt = const.DEFAULT_WAIT_TIMEOUT

    @property
    def base_url(self) -> str:
        return f"https://{self.endpoint}:{self.port}{const.API_BASE_PATH}"

    @classmethod
    def load(cls) -> "ProviderConfig":
        """
        Build the provider configuration from the config files and the environment.

        :raises ProviderConfigurationError: A required setting is missing or a setting is invalid
        """
        for option in (endpoint, username, password):
            if not option.get():
                raise ProviderConfigurationError(
                    f"The Nutanix {option.name} is not configured: set {option.name} in the [{SECTION}] section of the"
                    f" configuration file or set the {option.env_vars[0]} environment variable"
                )

        try:
            return cls(
                endpoint=endpoint.get(),
                username=username.get(),
                password=password.get(),
                port=port.get(),
                proxy_url=proxy_url.get(),
                insecure=insecure.get(),
                wait_timeout=wait_timeout.get(),
            )
        except (ValueError, pydantic.ValidationError) as e:
            raise ProviderConfigurationError(f"Invalid Nutanix provider configuration: {e}") from e
