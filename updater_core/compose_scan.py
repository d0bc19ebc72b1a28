"""Line scanner for the narrow compose layout this tool understands.

Only a top-level ``services:`` mapping with one nesting level of service
names is recognized. Anchors, multi-document files, flow mappings and
deeper service nesting are not supported.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from updater_core.models import (
    DEFAULT_SERVICE,
    IMAGE_REPOSITORIES,
    ServiceDescriptor,
    UpgradeError,
)

REPOSITORY_PATTERN = '|'.join(re.escape(repo) for repo in IMAGE_REPOSITORIES)

_REPOSITORY_RE = re.compile(REPOSITORY_PATTERN)
_SERVICES_KEY_RE = re.compile(r'^services:\s*(?:#.*)?$')
_SERVICE_KEY_RE = re.compile(r'^([ \t]+)([A-Za-z0-9._-]+):\s*(?:#.*)?$')
_IMAGE_KEY_RE = re.compile(r'^[ \t]+image:[ \t]+(\S.*?)\s*$')
# group 1: "image:" plus spacing and optional quote, 2: repository, 3: tag
_IMAGE_REF_RE = re.compile(r'(image:[ \t]+["\']?)(' + REPOSITORY_PATTERN + r'):([^\s"\'#]+)')

# scanner states
OUTSIDE = 'outside'
SEEKING = 'seeking'
IN_SERVICE = 'in_service'


@dataclass
class ScannedService:
    name: str
    image: Optional[str] = None
    image_line: Optional[str] = None


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(' \t'))


def scan_services(text: str) -> List[ScannedService]:
    """Return the services declared under the top-level ``services:`` key, in order.

    The service level is the indentation of the first ``name:`` line inside
    the section; only keys at exactly that indentation open a service. The
    first ``image:`` line below a service is attributed to it.
    """
    state = OUTSIDE
    service_indent: Optional[int] = None
    current: Optional[ScannedService] = None
    services: List[ScannedService] = []

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue
        indent = _indent(line)
        if indent == 0:
            # every top-level key opens or closes the services section
            state = SEEKING if _SERVICES_KEY_RE.match(line) else OUTSIDE
            current = None
            continue
        if state == OUTSIDE:
            continue

        key = _SERVICE_KEY_RE.match(line)
        if service_indent is None:
            if not key:
                continue
            service_indent = indent
        if indent <= service_indent:
            if key and indent == service_indent:
                current = ScannedService(name=key.group(2))
                services.append(current)
                state = IN_SERVICE
            else:
                current = None
                state = SEEKING
            continue

        if state == IN_SERVICE and current.image_line is None:
            image = _IMAGE_KEY_RE.match(line)
            if image:
                current.image = image.group(1)
                current.image_line = line
    return services


def locate_service(text: str, source: str = 'compose file') -> str:
    """Name of the n8n service: first service with a recognized image, else one named ``n8n``."""
    services = scan_services(text)
    for svc in services:
        if svc.image and _REPOSITORY_RE.search(svc.image):
            return svc.name
    if any(svc.name == DEFAULT_SERVICE for svc in services):
        return DEFAULT_SERVICE
    raise UpgradeError(f"Could not detect the n8n service in {source}.")


def parse_image_reference(image_line: str):
    """Return (repository, tag) from an ``image:`` line, or (None, None)."""
    m = _IMAGE_REF_RE.search(image_line or '')
    if not m:
        return None, None
    return m.group(2), m.group(3)


def describe_service(text: str, name: str) -> ServiceDescriptor:
    for svc in scan_services(text):
        if svc.name == name:
            repository, tag = parse_image_reference(svc.image_line)
            return ServiceDescriptor(name=name, image_line=svc.image_line, repository=repository, tag=tag)
    return ServiceDescriptor(name=name)


def rewrite_image_tags(text: str, tag: str) -> str:
    """Point every recognized ``image: <repo>:<tag>`` reference at ``tag``.

    Repository, quoting and surrounding whitespace are left untouched.
    """
    return _IMAGE_REF_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}:{tag}", text)
