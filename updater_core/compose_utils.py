import os
import shutil
import subprocess
import tempfile
from datetime import datetime
from typing import List, Optional

from updater_core.compose_scan import rewrite_image_tags
from updater_core.models import COMPOSE_FILES, IMAGE_REPOSITORIES, ServiceDescriptor, UpgradeContext, UpgradeError


def require_command(shutil_module, name: str) -> str:
    path = shutil_module.which(name)
    if path is None:
        raise UpgradeError(f"Command not found: {name}")
    return path


def get_compose_command(shutil_module, timeout: Optional[int] = None) -> List[str]:
    """Determine docker compose command (plugin or standalone).

    The plugin must answer ``docker compose version``; the standalone binary
    only has to be on PATH. Accepts the calling module's `shutil` so callers
    can allow monkeypatching on their own imported object.
    """
    if shutil_module.which('docker') is not None:
        try:
            subprocess.run(
                ['docker', 'compose', 'version'],
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
            )
            return ['docker', 'compose']
        except (subprocess.SubprocessError, OSError):
            pass
    if shutil_module.which('docker-compose') is not None:
        return ['docker-compose']
    raise UpgradeError("Neither 'docker compose' nor 'docker-compose' is available.")


def detect_compose_file(project_dir: str, logger) -> str:
    for name in COMPOSE_FILES:
        path = os.path.join(project_dir, name)
        if os.path.isfile(path):
            logger.info(f"Using compose file: {name}")
            return path
    raise UpgradeError(f"No docker-compose.yml (or compose.yml) found in {project_dir}.")


def detect_override_file(compose_file: str, logger) -> Optional[str]:
    """Override file compose would merge automatically, e.g. docker-compose.override.yml."""
    directory, name = os.path.split(compose_file)
    stem = os.path.splitext(name)[0]
    for ext in ('.yml', '.yaml'):
        path = os.path.join(directory, f"{stem}.override{ext}")
        if os.path.isfile(path):
            logger.info(f"Using override file: {os.path.basename(path)}")
            return path
    return None


def supports_wait_flag(compose_cmd: List[str], cwd: str, timeout: Optional[int] = None) -> bool:
    """True when ``<compose> up --help`` advertises ``--wait`` (docker-compose v1 does not)."""
    try:
        result = subprocess.run(
            [*compose_cmd, 'up', '-d', '--help'],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (subprocess.SubprocessError, OSError):
        return False
    return result.returncode == 0 and '--wait' in (result.stdout or '')


def run_compose(args: List[str], cwd: str, logger, timeout: Optional[int] = None) -> subprocess.CompletedProcess:
    """Run a compose command; any failure is fatal."""
    logger.debug(f"Running: {' '.join(args)}")
    try:
        return subprocess.run(
            args, cwd=cwd, capture_output=True, text=True, check=True, timeout=timeout
        )
    except subprocess.CalledProcessError as e:
        raise UpgradeError(f"Compose command failed: {' '.join(args)}: {(e.stderr or '').strip() or e}")
    except (subprocess.TimeoutExpired, OSError) as e:
        raise UpgradeError(f"Compose command failed: {' '.join(args)}: {e}")


def _compose_base(ctx: UpgradeContext) -> List[str]:
    # an explicit -f disables compose's own override merging, so pass it too
    base = [*ctx.compose_cmd, '-f', ctx.compose_file]
    if ctx.override_file:
        base += ['-f', ctx.override_file]
    return base


def current_container_id(ctx: UpgradeContext, service: str, logger) -> str:
    """Container id of the running service, or '' when it is not running."""
    try:
        result = run_compose([*_compose_base(ctx), 'ps', '-q', service], ctx.project_dir, logger, ctx.compose_timeout)
    except UpgradeError as e:
        logger.debug(f"Could not list containers for {service}: {e}")
        return ''
    for line in (result.stdout or '').splitlines():
        if line.strip():
            return line.strip()
    return ''


def recreate_service(ctx: UpgradeContext, service: str, logger) -> None:
    run_compose([*_compose_base(ctx), 'up', '-d', '--no-deps', service], ctx.project_dir, logger, ctx.compose_timeout)


def recreate_service_and_wait(ctx: UpgradeContext, service: str, logger) -> None:
    """Second recreate that blocks until the service reports ready."""
    run_compose(
        [*_compose_base(ctx), 'up', '-d', '--no-deps', '--wait', service],
        ctx.project_dir,
        logger,
        ctx.compose_timeout,
    )


def read_compose_file(path: str) -> str:
    try:
        with open(path, 'r', encoding='utf-8', errors='surrogateescape', newline='') as f:
            return f.read()
    except OSError as e:
        raise UpgradeError(f"Failed to read compose file {path}: {e}")


def backup_path_for(path: str, started_at: datetime) -> str:
    return f"{path}.bak-{started_at.strftime('%Y%m%d%H%M%S')}"


def backup_compose_file(path: str, started_at: datetime) -> str:
    """Copy the compose file (with metadata) next to itself; fatal on failure."""
    backup = backup_path_for(path, started_at)
    try:
        shutil.copy2(path, backup)
    except OSError as e:
        raise UpgradeError(f"Failed to back up {path} to {backup}: {e}")
    return backup


def write_compose_file(path: str, content: str) -> None:
    """Replace the compose file through a temp file in the same directory, keeping its mode."""
    try:
        orig_mode = os.stat(path).st_mode & 0o777
    except OSError:
        orig_mode = None
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix='.compose-', suffix='.yml', dir=os.path.dirname(path) or '.')
        with os.fdopen(fd, 'w', encoding='utf-8', errors='surrogateescape', newline='') as tmp:
            tmp.write(content)
        if orig_mode is not None:
            os.chmod(tmp_path, orig_mode)
        os.replace(tmp_path, path)
    except OSError as e:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise UpgradeError(f"Failed to update compose file {path}: {e}")


def update_compose_file(ctx: UpgradeContext, descriptor: ServiceDescriptor, logger) -> Optional[str]:
    """Rewrite the n8n image tag in place. Returns the backup path, or None when skipped."""
    if not descriptor.image_line:
        logger.warning(f"No explicit image line found for service '{descriptor.name}'.")
        logger.warning(f"This tool expects an 'image: ({'|'.join(IMAGE_REPOSITORIES)}):<tag>' entry. Skipping tag update.")
        return None
    if not descriptor.repository:
        logger.warning(f"Could not parse current image repo from: {descriptor.image_line.strip()}")
        return None

    original = read_compose_file(ctx.compose_file)
    backup = backup_compose_file(ctx.compose_file, ctx.started_at)
    write_compose_file(ctx.compose_file, rewrite_image_tags(original, ctx.desired_tag))
    logger.info(f"Updated image tag to: {descriptor.repository}:{ctx.desired_tag} (backup: {backup})")
    return backup
