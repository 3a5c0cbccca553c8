"""Template resource graph and document codec."""

from .models import (
    MAX_RESOURCES_PER_TEMPLATE,
    STACK_REFERENCE_TYPE,
    Resource,
    Template,
    new_stack_reference,
    stack_reference_name,
)
from .parser import load_template, parse_template, validate_template

__all__ = [
    "MAX_RESOURCES_PER_TEMPLATE",
    "STACK_REFERENCE_TYPE",
    "Resource",
    "Template",
    "new_stack_reference",
    "stack_reference_name",
    "load_template",
    "parse_template",
    "validate_template",
]
