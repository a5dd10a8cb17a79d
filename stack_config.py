"""
This module defines the data structures for the stack declaration file.
The builder works on the raw dictionary; these dataclasses give it a
validated, typed view so that bad references are caught before Pulumi
registers a single resource.
"""

import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

REQUIRED_KEYS = ["team", "service", "environment", "region"]
REF_PREFIX = "ref:"


def load_config(file_path: str) -> Dict[str, Any]:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file)

    if not isinstance(config_data, dict):
        raise ValueError(f"Configuration file '{file_path}' must contain a mapping")

    # Ensure required keys exist
    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")

    return config_data


def ref_target(value: str) -> str:
    """Return the resource name a 'ref:' string points at."""
    return value[len(REF_PREFIX):].split(".", 1)[0]


def iter_refs(value: Any) -> Iterator[str]:
    if isinstance(value, dict):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, list):
        for item in value:
            yield from iter_refs(item)
    elif isinstance(value, str) and value.startswith(REF_PREFIX):
        yield ref_target(value)


@dataclass
class AWSResource:
    name: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)
    custom_name: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AWSResource":
        if not isinstance(data, dict):
            raise ValueError(f"Resource entry must be a mapping, got: {data!r}")
        for key in ("name", "type"):
            if not data.get(key):
                raise ValueError(f"Resource entry is missing '{key}': {data!r}")
        if not isinstance(data["type"], str) or "." not in data["type"]:
            raise ValueError(
                f"Resource '{data['name']}' has type {data['type']!r}, expected 'module.Class'"
            )
        return cls(
            name=data["name"],
            type=data["type"],
            args=as_mapping(data.get("args"), f"args of resource '{data['name']}'"),
            custom_name=data.get("custom_name"),
            depends_on=as_name_list(data.get("depends_on"), data["name"]),
        )


def as_mapping(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{what}' must be a mapping, got: {value!r}")
    return dict(value)


def as_name_list(value: Any, owner: str) -> List[str]:
    """Accept a single resource name or a list of them."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'depends_on' of resource '{owner}' must be a name or a list of names, got: {value!r}")
    return list(value)


@dataclass
class StackConfig:
    team: str
    service: str
    environment: str
    region: str
    tags: Dict[str, str] = field(default_factory=dict)
    aws_resources: List[AWSResource] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StackConfig":
        missing = [key for key in REQUIRED_KEYS if key not in data]
        if missing:
            raise ValueError(f"Missing required configuration key: {missing[0]}")

        entries = data.get("aws_resources") or []
        if not isinstance(entries, list):
            raise ValueError(f"'aws_resources' must be a list, got: {entries!r}")
        resources = [AWSResource.from_dict(item) for item in entries]
        seen = set()
        for resource in resources:
            if resource.name in seen:
                raise ValueError(f"Duplicate resource name: {resource.name}")
            seen.add(resource.name)

        return cls(
            team=str(data["team"]),
            service=str(data["service"]),
            environment=str(data["environment"]),
            region=str(data["region"]),
            tags=as_mapping(data.get("tags"), "tags"),
            aws_resources=resources,
            outputs=as_mapping(data.get("outputs"), "outputs"),
        )

    def references(self) -> List[Tuple[str, str]]:
        refs = []
        for resource in self.aws_resources:
            refs.extend((resource.name, target) for target in iter_refs(resource.args))
        for name, value in self.outputs.items():
            refs.extend((f"output '{name}'", target) for target in iter_refs(value))
        return refs

    def validate(self) -> None:
        """Check that every reference points at an earlier declaration.

        Resources are created in declaration order, so a reference to a
        later entry can never resolve.
        """
        for name, value in self.outputs.items():
            if not isinstance(value, str) or not value.startswith(REF_PREFIX):
                raise ValueError(f"Output '{name}' must be a 'ref:' expression")

        positions = {resource.name: index for index, resource in enumerate(self.aws_resources)}
        for owner, target in self.references():
            if owner not in positions:
                if target not in positions:
                    raise ValueError(f"Stack {owner} references unknown resource '{target}'")
            elif positions.get(target, len(positions)) >= positions[owner]:
                raise ValueError(
                    f"Resource '{owner}' references '{target}', which is not declared before it"
                )

        for resource in self.aws_resources:
            for target in resource.depends_on:
                if positions.get(target, len(positions)) >= positions[resource.name]:
                    raise ValueError(
                        f"Resource '{resource.name}' depends on '{target}', "
                        f"which is not declared before it"
                    )
