"""YAML/JSON template parser with CloudFormation short-form intrinsics."""

import sys
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import ValidationError

from nestdeploy.template.models import RESOURCES_KEY, Template
from nestdeploy.utils.errors import InputError
from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)

STDIN_SOURCE = "-"

# Short-form tags that expand to Fn::<Name>
INTRINSIC_FUNCTIONS = {
    "And",
    "Base64",
    "Cidr",
    "Equals",
    "FindInMap",
    "GetAtt",
    "GetAZs",
    "If",
    "ImportValue",
    "Join",
    "Not",
    "Or",
    "Select",
    "Split",
    "Sub",
    "Transform",
}


class TemplateLoader(yaml.SafeLoader):
    """SafeLoader that understands CloudFormation tags.

    Timestamps are kept as strings so ``AWSTemplateFormatVersion: 2010-09-09``
    survives unquoted.
    """


def _construct_timestamp(loader: TemplateLoader, node: yaml.Node) -> str:
    return loader.construct_scalar(node)


def _construct_intrinsic(loader: TemplateLoader, tag_suffix: str, node: yaml.Node) -> Any:
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    if tag_suffix == "Ref":
        return {"Ref": value}
    if tag_suffix == "Condition":
        return {"Condition": value}
    if tag_suffix not in INTRINSIC_FUNCTIONS:
        raise yaml.constructor.ConstructorError(
            None, None, f"unknown tag !{tag_suffix}", node.start_mark
        )
    if tag_suffix == "GetAtt" and isinstance(value, str):
        value = value.split(".", 1)
    return {f"Fn::{tag_suffix}": value}


TemplateLoader.add_constructor("tag:yaml.org,2002:timestamp", _construct_timestamp)
TemplateLoader.add_multi_constructor("!", _construct_intrinsic)


def parse_template(text: Union[str, bytes], source: str = "<template>") -> Template:
    """Parse a template document.

    Args:
        text: YAML or JSON document
        source: Where the document came from, used in error messages

    Returns:
        Parsed Template

    Raises:
        InputError: If the document is not a valid template
    """
    try:
        data = yaml.load(text, Loader=TemplateLoader)
    except yaml.YAMLError as e:
        raise InputError(f"Failed to parse template {source}: {e}", cause=e) from e

    if not isinstance(data, dict):
        raise InputError(f"Template {source} must be a mapping at the top level")

    resources = data.get(RESOURCES_KEY)
    if resources is not None and not isinstance(resources, dict):
        raise InputError(f"Template {source}: '{RESOURCES_KEY}' must be a mapping")

    for name, body in (resources or {}).items():
        if not isinstance(body, dict) or not isinstance(body.get("Type"), str):
            raise InputError(
                f"Template {source}: resource '{name}' has no Type",
                suggestions=["Every resource needs a Type such as AWS::S3::Bucket"],
            )

    try:
        template = Template.from_dict(data)
    except ValidationError as e:
        raise InputError(f"Template {source} is malformed: {e}", cause=e) from e

    logger.debug(f"Parsed template {source} with {len(template.resources)} resources")
    return template


def load_template(source: Union[str, Path]) -> Template:
    """Read and parse a template from a path or standard input ('-').

    Raises:
        InputError: If the template cannot be read or parsed
    """
    if str(source) == STDIN_SOURCE:
        try:
            text = sys.stdin.read()
        except (OSError, UnicodeDecodeError) as e:
            raise InputError(f"Unable to read template from stdin: {e}", cause=e) from e
        return parse_template(text, source="<stdin>")

    path = Path(source)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(f"Unable to read template {path}: {e}", cause=e) from e
    return parse_template(text, source=str(path))


def validate_template(template: Template) -> None:
    """Reject templates that cannot be deployed.

    Raises:
        InputError: If the template declares no resources
    """
    if not template.resources:
        raise InputError(
            "Template contains no resources",
            suggestions=["Declare at least one resource under 'Resources'"],
        )
