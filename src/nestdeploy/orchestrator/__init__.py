"""Orchestrator module for split-upload-deploy attempts."""

from nestdeploy.orchestrator.orchestrator import (
    AttemptState,
    DeploymentAttempt,
    DeploymentOrchestrator,
    DeploymentPath,
    ProgressCallback,
)

__all__ = [
    'AttemptState',
    'DeploymentAttempt',
    'DeploymentOrchestrator',
    'DeploymentPath',
    'ProgressCallback',
]
