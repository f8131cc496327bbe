from typing import List, Optional, Tuple

from docker.errors import APIError, DockerException, NotFound

from upgrade_core.models import ExecResult, PullResult


def docker_installed(shutil_module) -> bool:
    """Return True if the docker CLI is on PATH.

    Accepts the calling module's `shutil` so callers can allow monkeypatching
    on their own imported object.
    """
    return shutil_module.which('docker') is not None


def short_image_ref(image: str) -> str:
    """Render an image field the way `docker ps` prints it.

    The API reports an image whose tag has moved on as a full `sha256:` id;
    the CLI shows the first 12 hex characters.
    """
    if image.startswith('sha256:'):
        return image[len('sha256:'):][:12]
    return image


class DockerRuntime:
    """Thin wrapper over the Docker SDK returning plain results, never raising
    for per-container failures."""

    def __init__(self, docker_client, logger):
        self.docker_client = docker_client
        self.logger = logger

    def list_running(self) -> List[Tuple[str, str]]:
        """Return (name, image) for each running container in listing order."""
        running = []
        for entry in self.docker_client.api.containers():
            names = entry.get('Names') or []
            if not names:
                continue
            running.append((names[0].lstrip('/'), short_image_ref(entry.get('Image', ''))))
        return running

    def running_names(self) -> List[str]:
        return [name for name, _ in self.list_running()]

    def inspect_config_image(self, container_name: str) -> Optional[str]:
        """Return the image a container was started from, per `docker inspect`."""
        try:
            info = self.docker_client.api.inspect_container(container_name)
        except (NotFound, APIError) as e:
            self.logger.debug(f"Inspect failed for {container_name}: {e}")
            return None
        return (info.get('Config') or {}).get('Image')

    def exec(self, container_name: str, argv: List[str]) -> ExecResult:
        """Run a command in a container, returning combined stdout/stderr."""
        try:
            container = self.docker_client.containers.get(container_name)
            result = container.exec_run(argv)
        except NotFound as e:
            return ExecResult(exit_code=None, error=str(e), container_gone=True)
        except APIError as e:
            # 409 also covers paused and restarting containers, which are still listed
            gone = getattr(e, 'status_code', None) == 409 and 'is not running' in str(e)
            return ExecResult(exit_code=None, error=str(e), container_gone=gone)
        output = result.output or b''
        if isinstance(output, bytes):
            output = output.decode('utf-8', errors='replace')
        return ExecResult(exit_code=result.exit_code, output=output)

    def pull_image(self, image_name: str) -> PullResult:
        """Pull an image once; failures are reported, not retried."""
        try:
            self.logger.debug(f"Pulling image: {image_name}")
            self.docker_client.images.pull(image_name)
            return PullResult(ok=True)
        except DockerException as e:
            return PullResult(ok=False, error=str(e))

    def start_probe(self, image_name: str, probe_name: str, entrypoint: str) -> None:
        # stdin stays open so an interactive shell entrypoint keeps running
        self.docker_client.containers.run(
            image_name,
            name=probe_name,
            entrypoint=entrypoint,
            stdin_open=True,
            detach=True,
        )

    def remove_probe(self, probe_name: str) -> None:
        """Kill and remove a probe container; errors are logged only."""
        try:
            container = self.docker_client.containers.get(probe_name)
        except NotFound:
            self.logger.debug(f"Probe container {probe_name} not found during teardown")
            return
        except APIError as e:
            self.logger.warning(f"Could not look up probe container {probe_name}: {e}")
            return
        try:
            container.kill()
        except APIError as e:
            self.logger.debug(f"Kill of probe container {probe_name} failed: {e}")
        try:
            container.remove(force=True)
        except APIError as e:
            self.logger.warning(f"Failed to remove probe container {probe_name}: {e}")
