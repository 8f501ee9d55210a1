"""Run the agent inside a container through the Docker API.

Works against Docker or against podman's Docker-compatible socket
(``SandboxConfig.base_url``). The image's entrypoint is expected to be the
agent CLI; the launcher only supplies its arguments.
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from dotenv import dotenv_values
from pydantic import BaseModel

from ..utils.error_handling import log_and_ignore
from .launcher import AgentInvocation, AgentLaunchError, AgentLauncher, LaunchResult, Mount

logger = logging.getLogger(__name__)


class ContainerInfo(BaseModel):
    """A container this launcher started, as reported by the runtime."""
    id: str
    name: str
    image: str = ""
    state: str = ""
    status: str = ""
    created_at: Optional[datetime] = None
    task_id: Optional[str] = None


def build_agent_args(prompt: str, session_id: Optional[str] = None) -> List[str]:
    """Arguments passed to the agent CLI entrypoint for one turn."""
    args = ["-p", prompt, "--verbose", "--output-format", "stream-json"]
    if session_id:
        args += ["--resume", session_id]
    return args


def build_volumes(mounts: List[Mount]) -> Dict[str, Dict[str, str]]:
    return {
        str(Path(m.source)): {"bind": m.target, "mode": "ro" if m.read_only else "rw"}
        for m in mounts
    }


class ContainerLauncher(AgentLauncher):
    """Launches one short-lived container per agent turn."""

    def __init__(
        self,
        image: str,
        *,
        base_url: Optional[str] = None,
        env_file: Optional[Path] = None,
        network: Optional[str] = None,
        container_prefix: str = "agent-board",
        client: Optional[docker.DockerClient] = None,
    ):
        self.image = image
        self.base_url = base_url
        self.env_file = env_file
        self.network = network
        self.container_prefix = container_prefix
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        """Lazy-initialize Docker client."""
        if self._client is None:
            try:
                if self.base_url:
                    self._client = docker.DockerClient(base_url=self.base_url)
                else:
                    self._client = docker.from_env()
                self._client.ping()
            except DockerException as e:
                raise AgentLaunchError(
                    f"Failed to connect to container runtime. Is it running? {e}"
                ) from e
        return self._client

    def _environment(self, extra: Dict[str, str]) -> Dict[str, str]:
        env: Dict[str, str] = {}
        if self.env_file and Path(self.env_file).exists():
            env.update({k: v for k, v in dotenv_values(self.env_file).items() if v is not None})
        env.update(extra)
        return env

    def launch(self, invocation: AgentInvocation) -> LaunchResult:
        command = build_agent_args(invocation.prompt, invocation.session_id)
        start_time = time.time()

        try:
            container = self.client.containers.run(
                self.image,
                command=command,
                name=invocation.name,
                volumes=build_volumes(invocation.mounts),
                working_dir=invocation.working_dir,
                environment=self._environment(invocation.env),
                network=self.network,
                detach=True,
            )
        except ImageNotFound as e:
            raise AgentLaunchError(f"Sandbox image not found: {self.image}") from e
        except (APIError, DockerException) as e:
            raise AgentLaunchError(f"Failed to start agent container {invocation.name}: {e}") from e

        logger.info(f"Started agent container {invocation.name}")
        timed_out = False
        exit_code = -1
        try:
            try:
                status = container.wait(timeout=invocation.timeout_seconds)
                exit_code = status.get("StatusCode", -1)
            except (requests.exceptions.ReadTimeout, requests.exceptions.ConnectionError):
                timed_out = True
                logger.warning(
                    f"Agent container {invocation.name} exceeded {invocation.timeout_seconds}s, killing"
                )
                self.kill(invocation.name)

            stdout = container.logs(stdout=True, stderr=False).decode("utf-8", errors="replace")
            stderr = container.logs(stdout=False, stderr=True).decode("utf-8", errors="replace")
        except (APIError, DockerException) as e:
            raise AgentLaunchError(f"Lost agent container {invocation.name}: {e}") from e
        finally:
            try:
                container.remove(force=True)
            except DockerException as e:
                log_and_ignore(e, f"Failed to remove container {invocation.name}", logger_instance=logger)

        duration = time.time() - start_time
        logger.info(
            f"Agent container {invocation.name} finished: exit_code={exit_code}, "
            f"duration={duration:.1f}s"
        )
        return LaunchResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
            duration_seconds=duration,
        )

    def kill(self, name: str) -> None:
        try:
            self.client.containers.get(name).kill()
            logger.info(f"Killed agent container {name}")
        except NotFound:
            logger.debug(f"No running container named {name}")
        except (AgentLaunchError, DockerException) as e:
            log_and_ignore(e, f"Failed to kill container {name}", logger_instance=logger)

    def list_containers(self) -> List[ContainerInfo]:
        """Every container (running or not) whose name carries this launcher's prefix."""
        try:
            containers = self.client.containers.list(
                all=True, filters={"name": self.container_prefix},
            )
        except DockerException as e:
            raise AgentLaunchError(f"Failed to list agent containers: {e}") from e
        infos = []
        for container in containers:
            attrs = container.attrs or {}
            name = container.name or ""
            task_id = None
            if name.startswith(f"{self.container_prefix}-"):
                task_id = name[len(self.container_prefix) + 1:]
            infos.append(ContainerInfo(
                id=container.id,
                name=name,
                image=(attrs.get("Config") or {}).get("Image", ""),
                state=(attrs.get("State") or {}).get("Status", ""),
                status=container.status or "",
                created_at=_parse_created(attrs.get("Created")),
                task_id=task_id,
            ))
        return infos


def _parse_created(value) -> Optional[datetime]:
    """Docker reports an RFC 3339 string; podman's compat API may send epoch seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    text = str(value)
    # Trim nanoseconds to microseconds for fromisoformat
    if "." in text:
        head, _, tail = text.partition(".")
        digits = "".join(c for c in tail if c.isdigit())
        suffix = tail[len(digits):]
        text = f"{head}.{digits[:6]}{suffix}"
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable container timestamp: {value!r}")
        return None
