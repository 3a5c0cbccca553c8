"""Partition a template into a root template and nested templates."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from nestdeploy.splitter.classifier import Classifier, HotTypeClassifier
from nestdeploy.template.models import (
    MAX_RESOURCES_PER_TEMPLATE,
    Resource,
    Template,
    new_stack_reference,
    stack_reference_name,
)
from nestdeploy.utils.errors import SplitError
from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class NestedTemplate:
    """A nested template produced for one partition key."""

    key: str
    template: Template
    reference_name: str

    @property
    def file_name(self) -> str:
        """Object name of the nested template inside the staging container."""
        return f"template.{self.key}.yaml"


@dataclass
class SplitResult:
    """Outcome of splitting a template."""

    root: Template
    nested: Dict[str, NestedTemplate] = field(default_factory=dict)
    moved: Dict[str, str] = field(default_factory=dict)  # resource name -> partition key

    def get_total_templates(self) -> int:
        """Root plus nested templates."""
        return 1 + len(self.nested)

    def reference_for(self, key: str) -> Resource:
        """Stack reference in the root that points at a partition."""
        return self.root.resources[self.nested[key].reference_name]

    def oversized(self) -> List[str]:
        """Names of templates still above the per-template resource ceiling."""
        names = []
        if len(self.root.resources) > MAX_RESOURCES_PER_TEMPLATE:
            names.append("root")
        for key, nested in self.nested.items():
            if len(nested.template.resources) > MAX_RESOURCES_PER_TEMPLATE:
                names.append(key)
        return names


class TemplateSplitter:
    """Moves classified resources out of the root into nested templates.

    Resource-to-resource references are carried over untouched: a ``Ref``
    or ``Fn::GetAtt`` that now crosses a template boundary is not rewritten
    into stack outputs.
    """

    def __init__(self, classifier: Optional[Classifier] = None):
        self.classifier = classifier or HotTypeClassifier()

    def split(self, template: Template) -> SplitResult:
        """Split a template in place.

        Args:
            template: Root template, mutated to hold the remaining resources
                plus one stack reference per nonempty partition

        Returns:
            SplitResult with the root and the nested templates

        Raises:
            SplitError: If a generated stack reference name is already taken
        """
        assignments: Dict[str, str] = {}
        for resource in template.resources.values():
            if resource.is_stack_reference:
                continue
            key = self.classifier.classify(resource)
            if key is not None:
                assignments[resource.name] = key

        keys = list(dict.fromkeys(assignments.values()))
        for key in keys:
            name = stack_reference_name(key)
            if template.has_resource(name) and name not in assignments:
                raise SplitError(
                    f"Resource name {name!r} is reserved for the nested stack of partition {key!r}",
                    suggestions=[f"Rename the existing resource {name!r}"],
                )

        result = SplitResult(root=template)

        for name, key in assignments.items():
            nested = result.nested.get(key)
            if nested is None:
                nested = NestedTemplate(
                    key=key,
                    template=template.derive(),
                    reference_name=stack_reference_name(key),
                )
                result.nested[key] = nested
            nested.template.add_resource(template.remove_resource(name))
            result.moved[name] = key

        for key in result.nested:
            template.add_resource(new_stack_reference(key))

        for key, nested in result.nested.items():
            logger.info(
                f"Moved {len(nested.template.resources)} resource(s) into nested template {key}"
            )

        for name in result.oversized():
            logger.warning(
                f"Template {name} still declares more than {MAX_RESOURCES_PER_TEMPLATE} resources"
            )

        return result
