"""
Template Loader (``admissions_config.loader``).

Responsibility
--------------
Loads workflow template YAML files and parses them into typed
``WorkflowTemplate`` instances holding the ``StageSpec`` /
``TransitionSpec`` inputs ``DefinitionService.create_definition`` takes.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on kernel domain types
only; installing a template into the store is ``admissions_config.installer``.

Invariants enforced
-------------------
* Every template passes ``validate_template`` before it is parsed.
* Every parsed object is a frozen dataclass.
* ``template_checksum`` produces a deterministic SHA-256 hash for template
  identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML or failed validation  -> ``ConfigurationError`` listing
  every problem found.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from admissions_kernel.domain.guards import guard_from_dict
from admissions_kernel.domain.workflow import StageSpec, TransitionSpec, TriggerType
from admissions_kernel.exceptions import ConfigurationError
from admissions_kernel.logging_config import get_logger
from admissions_kernel.utils.hashing import hash_payload

from admissions_config.validator import validate_template

logger = get_logger("config.loader")

TEMPLATES_DIR = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class WorkflowTemplate:
    """A parsed workflow template, ready to be created as a definition."""

    application_type: str
    name: str
    stages: tuple[StageSpec, ...]
    transitions: tuple[TransitionSpec, ...] = ()
    start_stage: str | None = None
    description: str | None = None
    checksum: str = ""
    source: str | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: if the file contains invalid YAML.
    """
    with open(path) as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(str(path), [f"invalid YAML: {e}"]) from e


def template_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the template's canonical JSON. Key order does not matter."""
    return hash_payload(data)


def parse_sla(data: dict[str, Any]) -> timedelta | None:
    if "sla_hours" in data:
        return timedelta(hours=data["sla_hours"])
    if "sla_minutes" in data:
        return timedelta(minutes=data["sla_minutes"])
    return None


def parse_stage(data: dict[str, Any]) -> StageSpec:
    """Parse a ``StageSpec`` from a dict."""
    return StageSpec(
        name=data["name"],
        sequence=data["sequence"],
        required_document_types=frozenset(data.get("required_documents", [])),
        sla_duration=parse_sla(data),
        is_terminal=bool(data.get("terminal", False)),
        outcome=data.get("outcome"),
        description=data.get("description"),
        assigned_role=data.get("assigned_role"),
        entry_notifications=tuple(data.get("notifications", [])),
    )


def parse_transition(data: dict[str, Any]) -> TransitionSpec:
    """Parse a ``TransitionSpec`` from a dict."""
    guard = data.get("guard")
    return TransitionSpec(
        source=data["source"],
        target=data["target"],
        trigger_type=TriggerType(data.get("trigger", TriggerType.MANUAL.value)),
        guard=guard_from_dict(guard) if guard is not None else None,
        required_role=data.get("required_role"),
        name=data.get("name"),
        description=data.get("description"),
    )


def parse_template(
    data: dict[str, Any],
    known_predicates: Iterable[str] | None = None,
    source: str = "<template>",
) -> WorkflowTemplate:
    """
    Validate and parse a raw template mapping.

    Raises:
        ConfigurationError: listing every validation error.
    """
    result = validate_template(data, known_predicates, source=source)
    for warning in result.warnings:
        logger.warning("template_warning", extra={"source": source, "warning": warning})
    if not result.is_valid:
        logger.error(
            "template_invalid",
            extra={"source": source, "errors": result.errors},
        )
        raise ConfigurationError(source, result.errors)

    return WorkflowTemplate(
        application_type=data["application_type"],
        name=data["name"],
        description=data.get("description"),
        start_stage=data.get("start_stage"),
        stages=tuple(parse_stage(s) for s in data["stages"]),
        transitions=tuple(parse_transition(t) for t in data.get("transitions") or []),
        checksum=template_checksum(data),
        source=source,
    )


def load_template(
    path: Path | str,
    known_predicates: Iterable[str] | None = None,
) -> WorkflowTemplate:
    """Load and parse one template file."""
    path = Path(path)
    template = parse_template(load_yaml_file(path), known_predicates, source=str(path))
    logger.info(
        "template_loaded",
        extra={
            "source": str(path),
            "application_type": template.application_type,
            "stage_count": len(template.stages),
            "transition_count": len(template.transitions),
            "checksum": template.checksum,
        },
    )
    return template


def load_default_templates(
    known_predicates: Iterable[str] | None = None,
    templates_dir: Path | None = None,
) -> list[WorkflowTemplate]:
    """Load every ``*.yaml`` template shipped with the package, sorted by file name."""
    directory = templates_dir or TEMPLATES_DIR
    known = list(known_predicates) if known_predicates is not None else None
    return [load_template(p, known) for p in sorted(directory.glob("*.yaml"))]
