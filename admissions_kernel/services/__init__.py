"""Kernel services: definition lifecycle, sequences and the audit chain."""

from admissions_kernel.services.auditor_service import AuditorService, DurableAuditSink
from admissions_kernel.services.definition_service import DefinitionService
from admissions_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditorService",
    "DefinitionService",
    "DurableAuditSink",
    "SequenceService",
]
