"""In-memory resource graph for CloudFormation templates."""

from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_FORMAT_VERSION = "2010-09-09"

# Hard per-template ceiling enforced by CloudFormation
MAX_RESOURCES_PER_TEMPLATE = 500

STACK_REFERENCE_TYPE = "AWS::CloudFormation::Stack"
STACK_REFERENCE_SUFFIX = "NestedStack"
TEMPLATE_URL_PROPERTY = "TemplateURL"

# Top-level keys that are modelled explicitly, everything else is a section
FORMAT_VERSION_KEY = "AWSTemplateFormatVersion"
DESCRIPTION_KEY = "Description"
RESOURCES_KEY = "Resources"
OUTPUTS_KEY = "Outputs"


class Resource(BaseModel):
    """A single declared resource."""

    name: str = Field(..., description="Logical resource name, unique within its template")
    type: str = Field(..., description="Hierarchical type tag (e.g., AWS::ECS::Service)")
    properties: Dict[str, Any] = Field(
        default_factory=dict, description="Opaque resource properties"
    )
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Other resource-level keys (DependsOn, Condition, DeletionPolicy, ...)",
    )

    @property
    def is_stack_reference(self) -> bool:
        """Whether this resource points at a nested template."""
        return self.type == STACK_REFERENCE_TYPE

    @property
    def template_url(self) -> Optional[str]:
        """Nested template location for stack references."""
        return self.properties.get(TEMPLATE_URL_PROPERTY)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the template document shape."""
        data: Dict[str, Any] = {"Type": self.type}
        if self.properties:
            data["Properties"] = self.properties
        data.update(self.attributes)
        return data

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "Resource":
        """Create Resource from the template document shape."""
        attributes = {k: v for k, v in data.items() if k not in ("Type", "Properties")}
        return cls(
            name=name,
            type=data["Type"],
            properties=data.get("Properties") or {},
            attributes=attributes,
        )


class Template(BaseModel):
    """A mutable container of uniquely named resources."""

    format_version: Optional[str] = Field(
        DEFAULT_FORMAT_VERSION, description="AWSTemplateFormatVersion"
    )
    description: Optional[str] = Field(None, description="Template description")
    resources: Dict[str, Resource] = Field(
        default_factory=dict, description="Resources keyed by logical name"
    )
    sections: Dict[str, Any] = Field(
        default_factory=dict,
        description="Remaining top-level sections (Parameters, Outputs, ...)",
    )

    def add_resource(self, resource: Resource) -> None:
        """Add a resource, rejecting duplicate names."""
        if resource.name in self.resources:
            raise ValueError(f"Duplicate resource name: {resource.name}")
        self.resources[resource.name] = resource

    def remove_resource(self, name: str) -> Optional[Resource]:
        """Remove a resource and return it."""
        return self.resources.pop(name, None)

    def get_resource(self, name: str) -> Optional[Resource]:
        """Get a resource by name."""
        return self.resources.get(name)

    def has_resource(self, name: str) -> bool:
        """Check if a resource exists in the template."""
        return name in self.resources

    def stack_references(self) -> List[Resource]:
        """All stack reference resources in this template."""
        return [r for r in self.resources.values() if r.is_stack_reference]

    def derive(self) -> "Template":
        """Create an empty template that inherits this template's metadata."""
        return Template(format_version=self.format_version, description=self.description)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the template document shape."""
        data: Dict[str, Any] = {}
        if self.format_version is not None:
            data[FORMAT_VERSION_KEY] = self.format_version
        if self.description is not None:
            data[DESCRIPTION_KEY] = self.description
        for key, value in self.sections.items():
            if key != OUTPUTS_KEY:
                data[key] = value
        data[RESOURCES_KEY] = {name: r.to_dict() for name, r in self.resources.items()}
        if OUTPUTS_KEY in self.sections:
            data[OUTPUTS_KEY] = self.sections[OUTPUTS_KEY]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        """Create Template from the template document shape."""
        resources = {
            name: Resource.from_dict(name, body)
            for name, body in (data.get(RESOURCES_KEY) or {}).items()
        }
        sections = {
            k: v for k, v in data.items()
            if k not in (FORMAT_VERSION_KEY, DESCRIPTION_KEY, RESOURCES_KEY)
        }
        return cls(
            format_version=data.get(FORMAT_VERSION_KEY),
            description=data.get(DESCRIPTION_KEY),
            resources=resources,
            sections=sections,
        )

    def to_yaml(self) -> bytes:
        """Serialize to a UTF-8 YAML document.

        Intrinsic functions are emitted in their long form (``Ref``,
        ``Fn::GetAtt``) which every CloudFormation consumer accepts.
        """
        return yaml.safe_dump(
            self.to_dict(),
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
        ).encode("utf-8")


def stack_reference_name(partition_key: str) -> str:
    """Logical name of the stack reference for a partition."""
    return f"{partition_key}{STACK_REFERENCE_SUFFIX}"


def new_stack_reference(partition_key: str) -> Resource:
    """Create a stack reference whose location is filled in after upload."""
    return Resource(name=stack_reference_name(partition_key), type=STACK_REFERENCE_TYPE)
