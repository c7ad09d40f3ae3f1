"""Read-only selectors for the admissions workflow kernel."""

from admissions_kernel.selectors.application_selector import ApplicationSelector
from admissions_kernel.selectors.base import BaseSelector
from admissions_kernel.selectors.definition_selector import (
    DefinitionSelector,
    StageSelector,
    TransitionSelector,
)

__all__ = [
    "ApplicationSelector",
    "BaseSelector",
    "DefinitionSelector",
    "StageSelector",
    "TransitionSelector",
]
