"""Template splitting into nested stacks."""

from nestdeploy.splitter.classifier import (
    Classifier,
    HotTypeClassifier,
    PerTypeClassifier,
    RuleTableClassifier,
    build_classifier,
    partition_key,
)
from nestdeploy.splitter.splitter import NestedTemplate, SplitResult, TemplateSplitter

__all__ = [
    'Classifier',
    'HotTypeClassifier',
    'PerTypeClassifier',
    'RuleTableClassifier',
    'build_classifier',
    'partition_key',
    'NestedTemplate',
    'SplitResult',
    'TemplateSplitter',
]
