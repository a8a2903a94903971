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
Parsers for compose YAML files.
"""
import os
import re
from typing import Any, Dict, List, Optional

import structlog
import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..MODELS.orchestration_config import ComposeProject
from ..MODELS.service_definition import NetworkDefinition, ServiceDefinition
from ..UTILS.errors import ManifestError
from ..UTILS.string_interpolation import EnvironmentInterpolator

log = structlog.get_logger(__name__)

COMPOSE_FILES = ("compose.yaml", "compose.yml", "docker-compose.yaml", "docker-compose.yml")
DEFAULT_NETWORK = "default"


def find_compose_file(base_dir: str = ".") -> Optional[str]:
    """
    Returns the first compose file found in a directory, if any.
    """
    for candidate in COMPOSE_FILES:
        path = os.path.join(base_dir, candidate)
        if os.path.isfile(path):
            return path
    return None


def normalize_project_name(name: str) -> str:
    """
    Lower-cases a project name and replaces anything Incus would reject.
    """
    return re.sub(r"[^a-z0-9-]+", "-", name.lower()).strip("-")


class ComposeParser:
    """
    Parser for compose files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: Variables for interpolation, os.environ when omitted.
        """
        self.context = dict(os.environ) if context is None else dict(context)

    def parse(self, compose_path: str, project_name: Optional[str] = None) -> ComposeProject:
        """
        Parses a compose file from a path.

        Variables from a ``.env`` file beside the compose file are available
        for interpolation; the process environment takes precedence.

        :param compose_path: Path to the compose file.
        :param project_name: Overrides the name from the file or directory.
        :return: Parsed project.
        """
        try:
            with open(compose_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ManifestError(f"cannot read {compose_path}: {e}") from e

        base_dir = os.path.dirname(os.path.abspath(compose_path))
        env_file = os.path.join(base_dir, ".env")
        context = {}
        if os.path.isfile(env_file):
            context.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        context.update(self.context)

        default_name = os.path.basename(base_dir)
        return self.parse_from_string(content, project_name, default_name=default_name, context=context)

    def parse_from_string(
        self,
        content: str,
        project_name: Optional[str] = None,
        default_name: str = "",
        context: Optional[Dict[str, str]] = None,
    ) -> ComposeProject:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :param project_name: Overrides the name from the file.
        :param default_name: Used when neither the file nor the caller names the project.
        :param context: Interpolation variables, the parser's context when omitted.
        :return: Parsed project.
        """
        context = self.context if context is None else context
        content = EnvironmentInterpolator.interpolate(content, context)

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ManifestError(f"invalid YAML: {e}") from e
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ManifestError("compose file must be a mapping")

        name = normalize_project_name(project_name or data.get('name') or default_name)
        if not name:
            raise ManifestError("cannot determine a project name, set 'name' in the compose file")

        networks = {}
        services = {}
        try:
            for key, spec in self._mapping(data, 'networks').items():
                networks[key] = self._parse_network(name, key, self._body('network', key, spec))
            for svc_name, spec in self._mapping(data, 'services').items():
                services[svc_name] = self._parse_service(svc_name, self._body('service', svc_name, spec), context)
        except ValidationError as e:
            raise ManifestError(f"invalid compose definition: {e}") from e

        services, networks = self._attach_default_network(name, services, networks)
        for svc in services.values():
            for key in svc.networks:
                if key not in networks:
                    raise ManifestError(f"service {svc.name!r} refers to undefined network {key!r}")

        log.debug("parsed compose project", project=name, services=len(services), networks=len(networks))
        return ComposeProject(name=name, services=services, networks=networks)

    def _parse_network(self, project: str, key: str, spec: Dict[str, Any]) -> NetworkDefinition:
        """
        Parses a single top-level network.

        External networks keep their own name; owned ones are prefixed with
        the project name.
        """
        external = spec.get('external', False)
        name = spec.get('name')
        if isinstance(external, dict):
            # legacy form: external: {name: foo}
            name = name or external.get('name')
            external = True
        if not name:
            name = key if external else f"{project}-{key}"

        return NetworkDefinition(
            key=key,
            name=name,
            external=bool(external),
            extensions=self._extensions(spec),
        )

    def _parse_service(self, name: str, spec: Dict[str, Any], context: Dict[str, str]) -> ServiceDefinition:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :param context: Variables for environment entries given without a value.
        :return: A ServiceDefinition instance.
        """
        # Environment
        environment = {}
        env_spec = spec.get('environment', [])
        if isinstance(env_spec, list):
            for e in env_spec:
                if not isinstance(e, str):
                    raise ManifestError(f"service {name!r}: environment entry {e!r} must be a string")
                if '=' in e:
                    k, v = e.split('=', 1)
                    environment[k] = v
                elif e in context:
                    environment[e] = context[e]
        elif isinstance(env_spec, dict):
            for k, v in env_spec.items():
                if v is None:
                    if k in context:
                        environment[k] = context[k]
                else:
                    environment[k] = str(v)

        scale = spec.get('scale')
        if scale is None and isinstance(spec.get('deploy'), dict):
            scale = spec['deploy'].get('replicas')

        return ServiceDefinition(
            name=name,
            image=spec.get('image', ''),
            container_name=spec.get('container_name'),
            scale=1 if scale is None else scale,
            depends_on=self._keys(spec.get('depends_on')),
            networks=self._keys(spec.get('networks')),
            environment=environment,
            extensions=self._extensions(spec),
        )

    def _attach_default_network(self, project, services, networks):
        """
        Attaches services without networks to the implicit default network,
        declaring it when the file does not.
        """
        if all(svc.networks for svc in services.values()):
            return services, networks

        networks = dict(networks)
        if DEFAULT_NETWORK not in networks:
            networks[DEFAULT_NETWORK] = NetworkDefinition(key=DEFAULT_NETWORK, name=f"{project}-{DEFAULT_NETWORK}")

        attached = {}
        for name, svc in services.items():
            if not svc.networks:
                svc = svc.model_copy(update={'networks': [DEFAULT_NETWORK]})
            attached[name] = svc
        return attached, networks

    def _body(self, kind: str, key: Any, spec: Any) -> Dict[str, Any]:
        if spec is None:
            return {}
        if not isinstance(spec, dict):
            raise ManifestError(f"{kind} {key!r} must be a mapping, got {type(spec).__name__}")
        return spec

    def _mapping(self, data: Dict[str, Any], key: str) -> Dict[str, Any]:
        value = data.get(key) or {}
        if not isinstance(value, dict):
            raise ManifestError(f"'{key}' must be a mapping")
        return value

    def _keys(self, val: Any) -> List[str]:
        """
        Helper for keys that accept either a list or a mapping form.

        :param val: The value to convert.
        :return: A list of strings.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return [val]
        if isinstance(val, dict):
            return list(val.keys())
        if not isinstance(val, list):
            raise ManifestError(f"expected a list or mapping, got {type(val).__name__}: {val!r}")
        return list(val)

    def _extensions(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in spec.items() if isinstance(k, str) and k.startswith('x-')}
