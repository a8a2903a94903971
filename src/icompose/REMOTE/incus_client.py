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
Client for an Incus remote, driven through the ``incus`` command line tool.
"""
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import click
import structlog

from ..CONFIG.remotes import Remote
from ..UTILS.errors import ComposeError

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NetworkSpec:
    """A network to create on a remote."""

    name: str
    type: str
    config: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InstanceSpec:
    """An instance to create and start on a remote."""

    name: str
    image: str
    networks: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)


class RemoteError(ComposeError):
    """An ``incus`` command failed."""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr or f"exit status {returncode}"
        super().__init__(f"`{shlex.join(command)}`: {detail}")


class IncusClient:
    """
    Synchronous create and delete verbs against one remote.

    Each verb runs one or more ``incus`` commands and blocks until they
    finish. Any failure is raised as RemoteError.
    """

    def __init__(
        self,
        remote: str,
        project: Optional[str] = None,
        dry_run: bool = False,
        binary: str = "incus",
    ):
        """
        Initializes the client.

        Args:
            remote: Name of the remote, as known to the incus client config.
            project: Incus project to operate in, None for the remote's default.
            dry_run: Print commands instead of running them.
            binary: The incus executable.
        """
        self.remote = remote
        self.project = project
        self.dry_run = dry_run
        self.binary = binary

    def _target(self, name: str) -> str:
        return f"{self.remote}:{name}"

    def _run(self, args: List[str]) -> None:
        command = [self.binary] + args
        if self.project:
            command += ["--project", self.project]

        if self.dry_run:
            click.echo(shlex.join(command))
            return

        log.debug("running", command=shlex.join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                shell=False,
                check=False,
            )
        except OSError as e:
            raise RemoteError(command, -1, str(e)) from e
        if result.returncode != 0:
            raise RemoteError(command, result.returncode, result.stderr)

    def create_network(self, spec: NetworkSpec) -> None:
        args = ["network", "create", self._target(spec.name), f"--type={spec.type}"]
        args += [f"{k}={v}" for k, v in sorted(spec.config.items())]
        self._run(args)

    def delete_network(self, name: str) -> None:
        self._run(["network", "delete", self._target(name)])

    def create_instance(self, spec: InstanceSpec) -> None:
        """
        Creates an instance, attaches its networks and starts it.

        The first network is attached at creation time as eth0, any further
        ones as eth1, eth2, ...
        """
        target = self._target(spec.name)
        args = ["create", spec.image, target]
        if spec.networks:
            args += ["--network", spec.networks[0]]
        for key, value in sorted(spec.environment.items()):
            args += ["-c", f"environment.{key}={value}"]
        self._run(args)

        for i, network in enumerate(spec.networks[1:], start=1):
            self._run(["config", "device", "add", target, f"eth{i}", "nic", f"network={network}"])

        self._run(["start", target])

    def delete_instance(self, name: str) -> None:
        self._run(["delete", self._target(name), "--force"])


ClientFactory = Callable[[str, Remote, Optional[str]], IncusClient]


def incus_client_factory(dry_run: bool = False) -> ClientFactory:
    """
    Returns a factory building one IncusClient per remote.

    :param dry_run: Whether the clients print commands instead of running them.
    """
    def factory(name: str, remote: Remote, project: Optional[str]) -> IncusClient:
        return IncusClient(name, project=project, dry_run=dry_run)
    return factory
