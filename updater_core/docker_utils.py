from typing import List, Optional

import docker
from docker.errors import DockerException
from requests.exceptions import RequestException

from updater_core.models import NOT_RUNNING, UNKNOWN_VERSION, UpgradeError

N8N_PACKAGE_JSON = '/usr/local/lib/node_modules/n8n/package.json'

# Tried in order inside the container; the first one exiting 0 wins.
VERSION_COMMANDS = [
    ['n8n', '--version'],
    ['node', '-e', f"try{{console.log(require('{N8N_PACKAGE_JSON}').version)}}catch(e){{process.exit(1)}}"],
]


def init_docker_client(logger):
    """Connect to the Docker daemon; fatal if it does not answer a ping."""
    try:
        client = docker.from_env()
        client.ping()
    except (DockerException, RequestException) as e:
        raise UpgradeError(f"Failed to initialize Docker client: {e}")
    logger.debug("Docker client initialized successfully")
    return client


def pull_image(docker_client, repository: str, tag: str, logger) -> None:
    """Prefetch ``repository:tag`` so the recreate does not wait on the download."""
    logger.info(f"Pulling image: {repository}:{tag}")
    try:
        docker_client.images.pull(repository, tag=tag)
    except (DockerException, RequestException) as e:
        raise UpgradeError(f"Failed to pull image {repository}:{tag}: {e}")
    logger.info("Image pulled.")


def exec_output(docker_client, container_id: str, command: List[str], logger) -> Optional[str]:
    """Stdout of ``command`` run inside the container, or None if it failed."""
    try:
        container = docker_client.containers.get(container_id)
        exit_code, output = container.exec_run(command, stdout=True, stderr=False)
    except (DockerException, RequestException) as e:
        logger.debug(f"exec {command[0]} in {container_id[:12]} failed: {e}")
        return None
    if exit_code != 0:
        logger.debug(f"exec {command[0]} in {container_id[:12]} exited with {exit_code}")
        return None
    if isinstance(output, bytes):
        output = output.decode('utf-8', errors='replace')
    return (output or '').replace('\r', '').strip()


def container_version(docker_client, container_id: str, logger) -> str:
    """n8n version running in the container; never raises."""
    if not container_id:
        return NOT_RUNNING
    for command in VERSION_COMMANDS:
        version = exec_output(docker_client, container_id, command, logger)
        if version is not None:
            return version
    return UNKNOWN_VERSION
