"""Deployment service access."""

from nestdeploy.deployment.service import (
    DeploymentService,
    ProposalState,
    ProposalStatus,
    StackDescription,
    generate_proposal_name,
    proposal_state,
)

__all__ = [
    'DeploymentService',
    'ProposalState',
    'ProposalStatus',
    'StackDescription',
    'generate_proposal_name',
    'proposal_state',
]
