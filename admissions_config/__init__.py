"""
admissions_config -- workflow templates and engine settings.

Responsibility:
    Loads the YAML workflow templates shipped with the package (or
    supplied by an operator), validates them, and seeds them into the
    definition store.  Also reads engine settings with environment
    overrides.

Architecture position:
    Configuration -- sits above ``admissions_kernel``.  The kernel MUST
    NEVER import from ``admissions_config``.

Failure modes:
    - ``ConfigurationError`` -- malformed YAML, failed template
      validation, or unusable settings values.
    - ``DefinitionValidationError`` -- an installed template fails the
      graph checks run at activation.
"""

from admissions_config.installer import install_template, install_templates
from admissions_config.loader import (
    TEMPLATES_DIR,
    WorkflowTemplate,
    load_default_templates,
    load_template,
    parse_template,
    template_checksum,
)
from admissions_config.settings import EngineSettings, load_settings
from admissions_config.validator import TemplateValidationResult, validate_template

__all__ = [
    "EngineSettings",
    "TEMPLATES_DIR",
    "TemplateValidationResult",
    "WorkflowTemplate",
    "install_template",
    "install_templates",
    "load_default_templates",
    "load_settings",
    "load_template",
    "parse_template",
    "template_checksum",
    "validate_template",
]
