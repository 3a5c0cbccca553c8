"""Staging of templates in object storage and their compensating release."""

from nestdeploy.staging.manager import (
    ROOT_TEMPLATE_NAME,
    StagedArtifact,
    StagedTemplates,
    StagingManager,
    object_key,
)
from nestdeploy.staging.release import ReleaseAction, ReleaseReport, ReleaseStack
from nestdeploy.staging.store import ArtifactStore

__all__ = [
    'ROOT_TEMPLATE_NAME',
    'StagedArtifact',
    'StagedTemplates',
    'StagingManager',
    'object_key',
    'ReleaseAction',
    'ReleaseReport',
    'ReleaseStack',
    'ArtifactStore',
]
