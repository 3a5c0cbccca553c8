"""Error taxonomy for split-upload-deploy attempts."""

import logging
from typing import Optional, Dict, Any, List, Type, TypeVar
from enum import Enum
from dataclasses import dataclass
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)
from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during an attempt."""
    INPUT = "input"
    CONFIGURATION = "configuration"
    CREDENTIAL = "credential"
    STAGING = "staging"
    QUERY = "query"
    PROPOSAL = "proposal"
    DEPLOYMENT = "deployment"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Attempt cannot continue
    ERROR = "error"  # Attempt failed, staging was released
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


SEVERITY_LOG_LEVELS = {
    ErrorSeverity.CRITICAL: logging.ERROR,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.INFO: logging.INFO,
}


@dataclass
class ErrorContext:
    """Context information for an error."""
    stack_name: Optional[str] = None
    container: Optional[str] = None
    key: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    error_code: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class NestDeployError(Exception):
    """Base exception for all attempt failures."""

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize error.

        Args:
            message: Human-readable error message, also the exception's str()
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.stack_name:
            lines.append(f"   Stack: {self.context.stack_name}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.context.container:
            location = self.context.container
            if self.context.key:
                location = f"{location}/{self.context.key}"
            lines.append(f"   Staging: {location}")

        if self.cause and str(self.cause) != self.message:
            lines.append(f"   Cause: {self.cause}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'stack_name': self.context.stack_name,
                'container': self.context.container,
                'key': self.context.key,
                'operation': self.context.operation,
                'aws_service': self.context.aws_service,
                'aws_operation': self.context.aws_operation,
                'error_code': self.context.error_code,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class InputError(NestDeployError):
    """Invalid input, rejected before any side effect."""
    category = ErrorCategory.INPUT
    severity = ErrorSeverity.CRITICAL


class ConfigValidationError(InputError):
    """Configuration file failed validation."""
    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, errors: Optional[List[Dict]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class CredentialError(NestDeployError):
    """AWS credentials are missing or invalid."""
    category = ErrorCategory.CREDENTIAL
    severity = ErrorSeverity.CRITICAL


class StagingError(NestDeployError):
    """Staging container creation or template upload failed."""
    category = ErrorCategory.STAGING


class SplitError(StagingError):
    """Template could not be partitioned into nested templates."""


class QueryError(NestDeployError):
    """Current deployment state could not be determined."""
    category = ErrorCategory.QUERY


class ProposalRejected(NestDeployError):
    """Change proposal reached a failed terminal state.

    The message is the service's stated reason, verbatim.
    """
    category = ErrorCategory.PROPOSAL


class DeploymentError(NestDeployError):
    """Create or execute call against the deployment service failed."""
    category = ErrorCategory.DEPLOYMENT


class ProposalTimeoutError(DeploymentError):
    """A polled resource did not reach a terminal state in time."""


class AttemptCancelledError(NestDeployError):
    """The attempt was cancelled by the caller."""
    category = ErrorCategory.CANCELLED
    severity = ErrorSeverity.WARNING


E = TypeVar('E', bound=NestDeployError)


class ErrorHandler:
    """Converts botocore failures into the attempt error taxonomy."""

    # Mapping of AWS error codes to messages and suggestions
    AWS_ERROR_MAPPING = {
        'InvalidClientTokenId': {
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Check that your AWS credentials are correctly configured',
                'Verify credentials using: aws sts get-caller-identity',
            ]
        },
        'ExpiredToken': {
            'message': 'AWS session token has expired',
            'suggestions': [
                'Refresh your AWS session credentials',
                'Re-authenticate with your identity provider',
            ]
        },
        'SignatureDoesNotMatch': {
            'message': 'AWS credential signature is invalid',
            'suggestions': [
                'Verify your AWS secret access key is correct',
                'Regenerate AWS credentials if necessary',
            ]
        },
        'AccessDenied': {
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Grant s3:CreateBucket, s3:PutObject, s3:DeleteObject and s3:DeleteBucket',
                'Grant cloudformation:DescribeStacks, CreateStack, CreateChangeSet, '
                'DescribeChangeSet and ExecuteChangeSet',
                'Review service control policies (SCPs) if using AWS Organizations',
            ]
        },
        'BucketAlreadyExists': {
            'message': 'Staging bucket name is already taken',
            'suggestions': [
                'Retry the deployment to generate a new staging bucket name',
                'Choose a more specific staging container_prefix',
            ]
        },
        'TooManyBuckets': {
            'message': 'S3 bucket limit reached for this account',
            'suggestions': [
                'Delete leftover staging buckets that match the container prefix',
                'Request a bucket quota increase through AWS Support',
            ]
        },
        'InsufficientCapabilitiesException': {
            'message': 'Template requires additional capabilities',
            'suggestions': [
                'Add CAPABILITY_NAMED_IAM or CAPABILITY_AUTO_EXPAND to deployment.capabilities',
            ]
        },
        'AlreadyExistsException': {
            'message': 'Stack or change set already exists',
            'suggestions': [
                'Another deployment may be running against the same stack',
                'Retry once the concurrent operation has finished',
            ]
        },
        'LimitExceededException': {
            'message': 'CloudFormation quota exceeded',
            'suggestions': [
                'Split the template into more nested stacks',
                'Request a CloudFormation quota increase',
            ]
        },
        'Throttling': {
            'message': 'API rate limit exceeded',
            'suggestions': [
                'Wait a few moments and retry the deployment',
            ]
        },
        'ValidationError': {
            'message': 'Request rejected by the deployment service',
            'suggestions': [
                'Review the error message for the specific validation failure',
                'Validate the template with: aws cloudformation validate-template',
            ]
        },
    }

    def wrap(
        self,
        error: BaseException,
        error_cls: Type[E],
        context: Optional[ErrorContext] = None,
        message: Optional[str] = None
    ) -> NestDeployError:
        """Convert an exception into a taxonomy error.

        The result is always an instance of error_cls, so each step keeps
        its own error class. Credential failures carry credential
        suggestions instead of changing class. Errors that are already
        part of the taxonomy pass through unchanged.

        Args:
            error: The exception to convert
            error_cls: Taxonomy class for the step that failed
            context: Where the error occurred
            message: Optional prefix describing the failed step

        Returns:
            Categorized error instance
        """
        if isinstance(error, NestDeployError):
            return error

        context = context or ErrorContext()

        if isinstance(error, ClientError):
            return self._wrap_client_error(error, error_cls, context, message)

        if isinstance(error, NoCredentialsError):
            return error_cls(
                f"{message}: No AWS credentials found" if message else 'No AWS credentials found',
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables',
                    'Specify a profile with --profile flag',
                ]
            )

        if isinstance(error, PartialCredentialsError):
            return error_cls(
                f"{message}: Incomplete AWS credentials" if message else 'Incomplete AWS credentials',
                context=context,
                cause=error,
                suggestions=['Ensure both access key ID and secret access key are provided']
            )

        if isinstance(error, (BotoCoreError, ConnectionError, TimeoutError)):
            text = f"{message}: {error}" if message else str(error)
            return error_cls(
                text,
                context=context,
                cause=error,
                suggestions=['Check network connectivity to the AWS endpoints']
            )

        text = f"{message}: {error}" if message else str(error)
        return error_cls(text, context=context, cause=error)

    def _wrap_client_error(
        self,
        error: ClientError,
        error_cls: Type[E],
        context: ErrorContext,
        message: Optional[str]
    ) -> NestDeployError:
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))

        context.error_code = error_code
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.aws_operation = context.aws_operation or error.operation_name

        error_info = self.AWS_ERROR_MAPPING.get(error_code)
        if error_info:
            text = f"{error_info['message']}: {error_message}"
            suggestions = list(error_info['suggestions'])
        else:
            text = f"AWS Error ({error_code}): {error_message}"
            suggestions = ['Check AWS documentation for this error code']
        if message:
            text = f"{message}: {text}"

        return error_cls(text, context=context, cause=error, suggestions=suggestions)

    def log_error(self, error: NestDeployError) -> None:
        """Record a failed attempt in the log.

        The console gets a single line, the JSON log file also gets the
        full error record under the ``error`` field.

        Args:
            error: The error to log
        """
        logger.log(
            SEVERITY_LOG_LEVELS[error.severity],
            f"{type(error).__name__}: {error.message}",
            extra={'error': error.to_dict()},
        )


# Global error handler instance
error_handler = ErrorHandler()


def client_error_code(error: ClientError) -> str:
    """Extract the service error code from a ClientError."""
    return error.response.get('Error', {}).get('Code', '')


def client_error_message(error: ClientError) -> str:
    """Extract the service error message from a ClientError."""
    return error.response.get('Error', {}).get('Message', str(error))
