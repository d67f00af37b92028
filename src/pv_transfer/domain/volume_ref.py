"""Volume reference value type and naming helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass

from pv_transfer.domain.errors import ResolutionError

_ARTIFACT_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_RESOURCE_NAME = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_MAX_RESOURCE_NAME_LENGTH = 63


@dataclass(slots=True, frozen=True)
class VolumeRef:
    """A PersistentVolumeClaim addressed by name and namespace."""

    name: str
    namespace: str

    @classmethod
    def parse(cls, text: str, default_namespace: str) -> VolumeRef:
        """Parse `name` or `name@namespace`, falling back to the default namespace."""

        raw = text.strip()
        name, separator, namespace = raw.rpartition("@")
        if not separator:
            name, namespace = raw, default_namespace
        name = name.strip()
        namespace = namespace.strip() or default_namespace
        if not name:
            raise ResolutionError(f"Volume reference '{text}' is missing a volume name.")
        if any(char.isspace() for char in name) or "/" in name:
            raise ResolutionError(f"Volume reference '{text}' contains invalid characters.")
        if not is_valid_resource_name(namespace):
            raise ResolutionError(f"Namespace '{namespace}' is not a valid resource name.")
        return cls(name=name, namespace=namespace)

    @property
    def display(self) -> str:
        return f"{self.name} ({self.namespace})"

    @property
    def artifact_stem(self) -> str:
        """Base name of exported artifacts: `{volume}@{namespace}`."""

        return f"{sanitize_artifact_component(self.name)}@{self.namespace}"

    def __str__(self) -> str:
        return f"{self.name}@{self.namespace}"


def sanitize_artifact_component(value: str) -> str:
    """Replace characters that are unsafe in local file names."""

    return _ARTIFACT_UNSAFE_CHARS.sub("_", value)


def is_valid_resource_name(value: str) -> bool:
    """Return whether `value` is a valid DNS-1123 label for namespaces and claims."""

    return len(value) <= _MAX_RESOURCE_NAME_LENGTH and bool(_RESOURCE_NAME.match(value))


def to_resource_name(value: str) -> str:
    """Best-effort conversion of an arbitrary identifier into a DNS-1123 label."""

    lowered = re.sub(r"[^a-z0-9-]", "-", value.lower())
    collapsed = re.sub(r"-{2,}", "-", lowered).strip("-")
    return collapsed[:_MAX_RESOURCE_NAME_LENGTH].rstrip("-")


__all__ = [
    "VolumeRef",
    "is_valid_resource_name",
    "sanitize_artifact_component",
    "to_resource_name",
]
