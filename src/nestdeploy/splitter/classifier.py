"""Classifiers mapping resource type tags to nested-template partitions."""

import re
from fnmatch import fnmatchcase
from typing import Dict, Iterable, Optional, Protocol, Tuple

from nestdeploy.config.models import DEFAULT_HOT_TYPES, SplittingSettings
from nestdeploy.template.models import Resource
from nestdeploy.utils.errors import InputError

_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]+")


def partition_key(type_tag: str) -> str:
    """Derive a template-group identifier from a type tag.

    ``AWS::ECS::Service`` becomes ``AWSECSService``.

    Raises:
        InputError: If nothing alphanumeric is left
    """
    key = _NON_ALPHANUMERIC.sub("", type_tag)
    if not key:
        raise InputError(f"Cannot derive a partition key from type {type_tag!r}")
    return key


class Classifier(Protocol):
    """Maps a resource to a partition key, or None to keep it in the root.

    Implementations must depend on the resource's type tag only.
    """

    def classify(self, resource: Resource) -> Optional[str]:
        ...


class HotTypeClassifier:
    """Gives each designated hot type its own partition."""

    def __init__(self, types: Iterable[str] = DEFAULT_HOT_TYPES):
        self.types = frozenset(types)

    def classify(self, resource: Resource) -> Optional[str]:
        if resource.type in self.types:
            return partition_key(resource.type)
        return None


class PerTypeClassifier:
    """One partition per distinct type tag, minus excluded patterns."""

    def __init__(self, exclude: Iterable[str] = ()):
        self.exclude = tuple(exclude)

    def classify(self, resource: Resource) -> Optional[str]:
        if any(fnmatchcase(resource.type, pattern) for pattern in self.exclude):
            return None
        return partition_key(resource.type)


class RuleTableClassifier:
    """Ordered glob rules over type tags; the first matching rule wins."""

    def __init__(self, rules: Dict[str, str], exclude: Iterable[str] = ()):
        self.rules: Tuple[Tuple[str, str], ...] = tuple(rules.items())
        self.exclude = tuple(exclude)

    def classify(self, resource: Resource) -> Optional[str]:
        if any(fnmatchcase(resource.type, pattern) for pattern in self.exclude):
            return None
        for pattern, key in self.rules:
            if fnmatchcase(resource.type, pattern):
                return key
        return None


def build_classifier(settings: SplittingSettings) -> Classifier:
    """Create the classifier selected by configuration."""
    if settings.strategy == "per-type":
        return PerTypeClassifier(exclude=settings.exclude)
    if settings.strategy == "rules":
        return RuleTableClassifier(settings.rules, exclude=settings.exclude)
    return HotTypeClassifier(settings.hot_types)
