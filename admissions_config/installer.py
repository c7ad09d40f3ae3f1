"""
Seeds the definition store from workflow templates.

Each template becomes a new DRAFT version for its application type and,
when ``activate`` is set, is activated (which runs full definition
validation and retires the previously active version).  Installing an
identical template twice is a no-op: the template checksum is compared
with the active definition's recorded checksum.
"""

from __future__ import annotations

from collections.abc import Iterable

from admissions_kernel.domain.workflow import WorkflowDefinition
from admissions_kernel.exceptions import ActiveDefinitionNotFoundError
from admissions_kernel.logging_config import get_logger
from admissions_kernel.services.definition_service import DefinitionService

from admissions_config.loader import WorkflowTemplate

logger = get_logger("config.installer")

INSTALLER_ACTOR = "template-installer"


def _checksum_marker(template: WorkflowTemplate) -> str:
    return f"template:{template.checksum}"


def install_template(
    service: DefinitionService,
    template: WorkflowTemplate,
    activate: bool = True,
    actor_id: str = INSTALLER_ACTOR,
) -> WorkflowDefinition:
    """Create (and optionally activate) a definition from one template."""
    marker = _checksum_marker(template)
    if activate:
        try:
            current = service.get_active_definition(template.application_type)
        except ActiveDefinitionNotFoundError:
            current = None
        if current is not None and current.description and marker in current.description:
            logger.info(
                "template_already_installed",
                extra={
                    "application_type": template.application_type,
                    "definition_id": str(current.id),
                    "checksum": template.checksum,
                },
            )
            return current

    description = f"{template.description or template.name} [{marker}]"
    definition = service.create_definition(
        template.application_type,
        template.name,
        template.stages,
        template.transitions,
        actor_id=actor_id,
        start_stage=template.start_stage,
        description=description,
    )
    if activate:
        definition = service.activate(definition.id, actor_id)

    logger.info(
        "template_installed",
        extra={
            "application_type": template.application_type,
            "definition_id": str(definition.id),
            "version": definition.version,
            "activated": activate,
            "checksum": template.checksum,
        },
    )
    return definition


def install_templates(
    service: DefinitionService,
    templates: Iterable[WorkflowTemplate],
    activate: bool = True,
    actor_id: str = INSTALLER_ACTOR,
) -> list[WorkflowDefinition]:
    """Install each template in order; see ``install_template``."""
    return [install_template(service, t, activate, actor_id) for t in templates]
