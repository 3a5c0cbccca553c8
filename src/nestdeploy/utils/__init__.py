"""Utility modules for logging, errors, polling and AWS client management."""

from nestdeploy.utils.aws_client import AWSClientManager, AWSCredentials
from nestdeploy.utils.polling import BackoffStrategy, poll_until
from nestdeploy.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    NestDeployError,
    InputError,
    ConfigValidationError,
    CredentialError,
    StagingError,
    SplitError,
    QueryError,
    ProposalRejected,
    DeploymentError,
    ProposalTimeoutError,
    AttemptCancelledError,
    ErrorHandler,
    error_handler
)
from nestdeploy.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AWSCredentials',

    # Polling
    'BackoffStrategy',
    'poll_until',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'NestDeployError',
    'InputError',
    'ConfigValidationError',
    'CredentialError',
    'StagingError',
    'SplitError',
    'QueryError',
    'ProposalRejected',
    'DeploymentError',
    'ProposalTimeoutError',
    'AttemptCancelledError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
