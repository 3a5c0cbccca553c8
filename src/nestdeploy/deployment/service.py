"""CloudFormation-backed deployment service."""

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from nestdeploy.utils.errors import (
    DeploymentError,
    ErrorContext,
    QueryError,
    client_error_code,
    client_error_message,
    error_handler,
)
from nestdeploy.utils.logging import get_logger
from nestdeploy.utils.polling import BackoffStrategy, poll_until

logger = get_logger(__name__)

# Stack states a finished create or update may settle in successfully
STACK_SUCCESS_STATUSES = {"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"}

CHANGE_SET_READY_STATUSES = {"CREATE_COMPLETE"}
CHANGE_SET_FAILED_STATUSES = {
    "FAILED",
    "DELETE_PENDING",
    "DELETE_IN_PROGRESS",
    "DELETE_COMPLETE",
    "DELETE_FAILED",
}


class ProposalState(Enum):
    """Lifecycle of a change proposal."""
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass
class StackDescription:
    """Current record of a deployed stack."""

    stack_id: str
    stack_name: str
    status: str
    reason: Optional[str] = None
    last_updated: Optional[datetime] = None

    def is_settled(self) -> bool:
        """Whether the stack has stopped changing."""
        return not self.status.endswith("_IN_PROGRESS")

    def is_success(self) -> bool:
        """Whether the stack settled in a healthy state."""
        return self.status in STACK_SUCCESS_STATUSES


@dataclass
class ProposalStatus:
    """Current status of a change proposal."""

    proposal_id: str
    state: ProposalState
    status: str
    reason: Optional[str] = None
    execution_status: Optional[str] = None

    def is_terminal(self) -> bool:
        """Whether the proposal reached ready or failed."""
        return self.state != ProposalState.PENDING


def proposal_state(status: str) -> ProposalState:
    """Map a change set status onto the proposal lifecycle."""
    if status in CHANGE_SET_READY_STATUSES:
        return ProposalState.READY
    if status in CHANGE_SET_FAILED_STATUSES:
        return ProposalState.FAILED
    return ProposalState.PENDING


def generate_proposal_name(now: Optional[datetime] = None) -> str:
    """Unique, valid change set name for one attempt."""
    now = now or datetime.now(timezone.utc)
    return f"Update-{now.strftime('%Y-%m-%d-%H-%M-%S')}-{uuid.uuid4().hex[:8]}"


def is_stack_missing(error: ClientError) -> bool:
    """Whether a DescribeStacks failure means the stack does not exist."""
    return client_error_code(error) == "ValidationError" and "does not exist" in client_error_message(error)


class DeploymentService:
    """Describe, create and update stacks through CloudFormation."""

    def __init__(
        self,
        cf_client,
        capabilities: Optional[List[str]] = None,
        retain_except_on_create: bool = True
    ):
        """Initialize deployment service.

        Args:
            cf_client: boto3 CloudFormation client
            capabilities: Capabilities acknowledged on create and update
            retain_except_on_create: Delete only newly created resources on rollback
        """
        self.cf_client = cf_client
        self.capabilities = list(capabilities) if capabilities is not None else ["CAPABILITY_IAM"]
        self.retain_except_on_create = retain_except_on_create

    def describe(self, stack_name: str) -> Optional[StackDescription]:
        """Read the current stack record.

        Returns:
            StackDescription, or None if the stack does not exist

        Raises:
            QueryError: If the lookup fails for any other reason
        """
        try:
            response = self.cf_client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if is_stack_missing(e):
                return None
            raise self._wrap(e, QueryError, stack_name, "describe_stacks",
                             "Unable to determine deployment state") from e
        except BotoCoreError as e:
            raise self._wrap(e, QueryError, stack_name, "describe_stacks",
                             "Unable to determine deployment state") from e

        stacks = response.get("Stacks", [])
        if not stacks:
            return None

        stack = stacks[0]
        return StackDescription(
            stack_id=stack.get("StackId", ""),
            stack_name=stack.get("StackName", stack_name),
            status=stack.get("StackStatus", ""),
            reason=stack.get("StackStatusReason"),
            last_updated=stack.get("LastUpdatedTime"),
        )

    def create(self, stack_name: str, template_url: str) -> str:
        """Create a new stack from a staged root template.

        Returns:
            Stack id

        Raises:
            DeploymentError: If the create call fails
        """
        logger.info(f"Creating stack {stack_name}")
        try:
            response = self.cf_client.create_stack(
                StackName=stack_name,
                TemplateURL=template_url,
                Capabilities=self.capabilities,
                OnFailure="ROLLBACK",
                RetainExceptOnCreate=self.retain_except_on_create,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap(e, DeploymentError, stack_name, "create_stack",
                             "Failed to create stack") from e

        return response.get("StackId", "")

    def create_change_proposal(self, stack_name: str, proposal_name: str, template_url: str) -> str:
        """Propose an update of an existing stack.

        Returns:
            Change set id

        Raises:
            DeploymentError: If the change set cannot be created
        """
        logger.info(f"Creating change set {proposal_name} for stack {stack_name}")
        try:
            response = self.cf_client.create_change_set(
                StackName=stack_name,
                ChangeSetName=proposal_name,
                ChangeSetType="UPDATE",
                TemplateURL=template_url,
                Capabilities=self.capabilities,
                IncludeNestedStacks=True,
                OnStackFailure="ROLLBACK",
            )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap(e, DeploymentError, stack_name, "create_change_set",
                             "Failed to create change set") from e

        return response["Id"]

    def describe_change_proposal(self, proposal_id: str, stack_name: str) -> ProposalStatus:
        """Read the status of a change set.

        Raises:
            DeploymentError: If the change set cannot be described
        """
        try:
            response = self.cf_client.describe_change_set(
                ChangeSetName=proposal_id,
                StackName=stack_name,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap(e, DeploymentError, stack_name, "describe_change_set",
                             "Failed to describe change set") from e

        status = response.get("Status", "")
        return ProposalStatus(
            proposal_id=proposal_id,
            state=proposal_state(status),
            status=status,
            reason=response.get("StatusReason"),
            execution_status=response.get("ExecutionStatus"),
        )

    def execute_change_proposal(self, proposal_id: str, stack_name: str) -> None:
        """Apply a ready change set.

        Raises:
            DeploymentError: If the execute call fails
        """
        logger.info(f"Executing change set for stack {stack_name}")
        try:
            self.cf_client.execute_change_set(
                ChangeSetName=proposal_id,
                StackName=stack_name,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap(e, DeploymentError, stack_name, "execute_change_set",
                             "Failed to execute change set") from e

    def wait_for_stack(
        self,
        stack_name: str,
        strategy: BackoffStrategy,
        cancel_event: Optional[threading.Event] = None,
        previous: Optional[StackDescription] = None
    ) -> StackDescription:
        """Block until a stack leaves its in-progress state.

        When ``previous`` is given, the stack only counts as settled once
        its ``LastUpdatedTime`` has moved past the previous record. An
        update that has not started yet still reports the old status.

        Args:
            stack_name: Stack to watch
            strategy: Backoff and bounds for the status checks
            cancel_event: Optional caller-controlled cancellation signal
            previous: Stack record read before the update was executed

        Returns:
            The settled StackDescription

        Raises:
            DeploymentError: If the stack settles in a failed or rolled back
                state, disappears, or cannot be described
            ProposalTimeoutError: If the stack does not settle in time
            AttemptCancelledError: If cancel_event is set
        """
        def has_settled(current: StackDescription) -> bool:
            if not current.is_settled():
                return False
            return previous is None or current.last_updated != previous.last_updated

        final = poll_until(
            lambda: self._describe_deployed(stack_name),
            has_settled,
            strategy,
            f"stack {stack_name}",
            cancel_event=cancel_event,
        )

        if not final.is_success():
            detail = f": {final.reason}" if final.reason else ""
            raise DeploymentError(
                f"Stack {stack_name} finished in {final.status}{detail}",
                context=ErrorContext(stack_name=stack_name, operation="wait_for_stack"),
                suggestions=["Inspect the stack events in the CloudFormation console"],
            )

        logger.info(f"Stack {stack_name} is {final.status}")
        return final

    def _describe_deployed(self, stack_name: str) -> StackDescription:
        try:
            current = self.describe(stack_name)
        except QueryError as e:
            raise DeploymentError(str(e), context=e.context, cause=e) from e
        if current is None:
            raise DeploymentError(f"Stack {stack_name} disappeared while deploying")
        return current

    def _wrap(self, error, error_cls, stack_name: str, operation: str, message: str):
        return error_handler.wrap(
            error,
            error_cls,
            ErrorContext(
                stack_name=stack_name,
                operation=operation,
                aws_service="cloudformation",
                aws_operation=operation,
            ),
            message=message,
        )
