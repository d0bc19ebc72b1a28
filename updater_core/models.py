from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


IMAGE_REPOSITORIES = ("n8nio/n8n", "ghcr.io/n8n-io/n8n")
DEFAULT_REPOSITORY = "n8nio/n8n"
DEFAULT_SERVICE = "n8n"
COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")

NOT_RUNNING = "not running"
UNKNOWN_VERSION = "unknown"


class UpgradeError(RuntimeError):
    """Fatal condition; aborts the run with exit code 1."""


@dataclass(frozen=True)
class ServiceDescriptor:
    """The n8n service as declared in the compose file."""
    name: str
    image_line: Optional[str] = None  # literal "image: ..." line, if any
    repository: Optional[str] = None  # one of IMAGE_REPOSITORIES
    tag: Optional[str] = None


@dataclass(frozen=True)
class UpgradeContext:
    """Values detected once at start-up and shared read-only by every step."""
    compose_cmd: List[str]
    compose_file: str
    project_dir: str
    desired_tag: str = "latest"
    supports_wait: bool = False
    compose_timeout: Optional[int] = None
    override_file: Optional[str] = None  # merged by compose when present next to compose_file
    started_at: datetime = field(default_factory=datetime.now)


@dataclass
class UpgradeOutcome:
    before: str
    after: str
    changed: bool
    direction: Optional[str] = None  # upgrade, downgrade, same
