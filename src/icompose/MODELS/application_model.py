# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
The application model: a parsed compose project combined with the run-level
settings that apply to it.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from .orchestration_config import ComposeProject
from .service_definition import NetworkDefinition, ServiceDefinition
from ..CONFIG.settings import ComposeSettings

DEFAULT_NETWORK_TYPE = "bridge"


class NetworkDefaults(BaseModel):
    """
    Type and uplink used for networks that do not override them.
    """
    model_config = {"frozen": True}

    type: str = DEFAULT_NETWORK_TYPE
    uplink: str = ""


class ApplicationModel(BaseModel):
    """
    Read-only view of one project for the duration of a run.

    Built once, after every flag, environment and config file override has
    been applied, and shared by the resolver, the graph builder and the
    orchestrator.
    """
    model_config = {"frozen": True}

    name: str
    services: Dict[str, ServiceDefinition] = {}
    networks: Dict[str, NetworkDefinition] = {}
    network_defaults: NetworkDefaults = Field(default_factory=NetworkDefaults)
    remote: Optional[str] = None
    project: Optional[str] = None

    @classmethod
    def build(cls, project: ComposeProject, settings: ComposeSettings) -> "ApplicationModel":
        """
        Applies the resolved settings to a parsed compose project.

        :param project: The parsed compose project.
        :param settings: Final settings (flags, environment, config file).
        :return: The finalized model.
        """
        defaults = NetworkDefaults(
            type=settings.network_type or DEFAULT_NETWORK_TYPE,
            uplink=settings.network_uplink or "",
        )
        return cls(
            name=project.name,
            services=dict(project.services),
            networks=dict(project.networks),
            network_defaults=defaults,
            remote=settings.remote or None,
            project=settings.project or None,
        )

    def instance_names(self, service: str) -> List[str]:
        """
        Returns the remote instance names backing a service.

        :param service: The service name.
        :return: One name per replica.
        """
        svc = self.services[service]
        base = svc.container_name or f"{self.name}-{service}"
        if svc.scale == 1:
            return [base]
        return [f"{base}-{i}" for i in range(1, svc.scale + 1)]

    def network_names(self, service: str) -> List[str]:
        """
        Returns the remote names of the networks a service attaches to.
        """
        names = []
        for key in self.services[service].networks:
            network = self.networks.get(key)
            names.append(network.name if network else key)
        return names
