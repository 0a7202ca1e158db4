"""
Typed decoders for the provisioning engine's structured state output.

Two documents are decoded:

- PulledState: the raw state artifact returned by ``terraform state pull``
  (version, serial, lineage, outputs, resource blocks). Used for backups,
  migration verification and restore verification.
- ShowDocument: the JSON view returned by ``terraform show -json``
  (values.root_module with nested child_modules). Used by the inspector.

Decoders never mutate or re-encode state bytes; they only read them.
"""

import json
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional

from stateward.errors import StateFormatError

SENSITIVE_PLACEHOLDER = "(sensitive)"


def _load(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise StateFormatError(f"Could not decode {what}: {e}")


@dataclass(frozen=True)
class OutputValue:
    name: str
    value: Any = None
    sensitive: bool = False

    def display_value(self) -> Any:
        return SENSITIVE_PLACEHOLDER if self.sensitive else self.value

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "value": self.display_value(), "sensitive": self.sensitive}


def _decode_outputs(raw: Any) -> tuple[OutputValue, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, dict):
        raise StateFormatError("'outputs' must be an object")
    outputs = []
    for name in sorted(raw):
        entry = raw[name]
        if entry is None:
            entry = {}
        if not isinstance(entry, dict):
            raise StateFormatError(f"Malformed output {name!r}: {entry!r}")
        outputs.append(OutputValue(
            name=name,
            value=entry.get("value"),
            sensitive=bool(entry.get("sensitive", False)),
        ))
    return tuple(outputs)


@dataclass(frozen=True)
class ResourceBlock:
    """One resource block of a raw state artifact."""
    mode: str
    type: str
    name: str
    provider: str = ""
    module: Optional[str] = None
    instance_count: int = 0

    @property
    def address(self) -> str:
        prefix = "data." if self.mode == "data" else ""
        local = f"{prefix}{self.type}.{self.name}"
        return f"{self.module}.{local}" if self.module else local


@dataclass(frozen=True)
class PulledState:
    """
    Decoded raw state artifact.

    An empty pull (no state stored yet) decodes to ``PulledState.empty()``.
    """
    version: Optional[int] = None
    terraform_version: Optional[str] = None
    serial: Optional[int] = None
    lineage: Optional[str] = None
    outputs: tuple[OutputValue, ...] = ()
    resources: tuple[ResourceBlock, ...] = ()

    @classmethod
    def empty(cls) -> "PulledState":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.resources

    @property
    def resource_count(self) -> int:
        return len(self.resources)

    @classmethod
    def from_text(cls, text: str) -> "PulledState":
        if not text or not text.strip():
            return cls.empty()
        return cls.from_json(_load(text, "state artifact"))

    @classmethod
    def from_json(cls, data: Any) -> "PulledState":
        if not isinstance(data, dict):
            raise StateFormatError("State artifact must be a JSON object")
        if "version" not in data:
            raise StateFormatError("State artifact has no 'version' field")
        raw_resources = data.get("resources", [])
        if raw_resources is None:
            raw_resources = []
        if not isinstance(raw_resources, list):
            raise StateFormatError("'resources' must be a list")
        resources = []
        for raw in raw_resources:
            if not isinstance(raw, dict) or "type" not in raw or "name" not in raw:
                raise StateFormatError(f"Malformed resource block: {raw!r}")
            resources.append(ResourceBlock(
                mode=raw.get("mode", "managed"),
                type=raw["type"],
                name=raw["name"],
                provider=raw.get("provider", ""),
                module=raw.get("module"),
                instance_count=len(raw.get("instances") or []),
            ))
        return cls(
            version=data.get("version"),
            terraform_version=data.get("terraform_version"),
            serial=data.get("serial"),
            lineage=data.get("lineage"),
            outputs=_decode_outputs(data.get("outputs")),
            resources=tuple(resources),
        )


@dataclass(frozen=True)
class ResourceRecord:
    """One resource instance from ``show -json``."""
    address: str
    mode: str
    type: str
    name: str
    provider: str = ""
    module: Optional[str] = None
    values: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self, include_values: bool = False) -> dict[str, Any]:
        data = {
            "address": self.address,
            "mode": self.mode,
            "type": self.type,
            "name": self.name,
            "provider": self.provider,
        }
        if self.module:
            data["module"] = self.module
        if include_values:
            data["values"] = self.values
        return data


def _walk_module(module: dict[str, Any], module_address: Optional[str], out: list[ResourceRecord]) -> None:
    for raw in module.get("resources") or []:
        if not isinstance(raw, dict) or "address" not in raw:
            raise StateFormatError(f"Malformed resource entry: {raw!r}")
        out.append(ResourceRecord(
            address=raw["address"],
            mode=raw.get("mode", "managed"),
            type=raw.get("type", ""),
            name=raw.get("name", ""),
            provider=raw.get("provider_name", ""),
            module=module_address,
            values=raw.get("values") or {},
        ))
    for child in module.get("child_modules") or []:
        _walk_module(child, child.get("address"), out)


@dataclass(frozen=True)
class ShowDocument:
    """Decoded ``show -json`` output, with child modules flattened."""
    terraform_version: Optional[str] = None
    format_version: Optional[str] = None
    outputs: tuple[OutputValue, ...] = ()
    resources: tuple[ResourceRecord, ...] = ()

    @classmethod
    def from_text(cls, text: str) -> "ShowDocument":
        return cls.from_json(_load(text, "engine show output"))

    @classmethod
    def from_json(cls, data: Any) -> "ShowDocument":
        if not isinstance(data, dict):
            raise StateFormatError("Show output must be a JSON object")
        values = data.get("values") or {}
        resources: list[ResourceRecord] = []
        root = values.get("root_module") or {}
        _walk_module(root, None, resources)
        return cls(
            terraform_version=data.get("terraform_version"),
            format_version=data.get("format_version"),
            outputs=_decode_outputs(values.get("outputs")),
            resources=tuple(resources),
        )

    @property
    def resource_count(self) -> int:
        return len(self.resources)

    def resources_by_type(self) -> dict[str, int]:
        counts = Counter(r.type for r in self.resources)
        return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))

    def providers(self) -> dict[str, int]:
        counts = Counter(r.provider for r in self.resources)
        return dict(sorted(counts.items()))
