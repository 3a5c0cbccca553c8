"""Split-upload-deploy state machine."""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from nestdeploy.config.models import DeployConfig
from nestdeploy.deployment.service import (
    DeploymentService,
    ProposalState,
    StackDescription,
    generate_proposal_name,
)
from nestdeploy.splitter.classifier import Classifier, build_classifier
from nestdeploy.splitter.splitter import SplitResult, TemplateSplitter
from nestdeploy.staging.manager import StagedArtifact, StagingManager
from nestdeploy.staging.release import ReleaseReport, ReleaseStack
from nestdeploy.staging.store import ArtifactStore
from nestdeploy.template.models import Template
from nestdeploy.template.parser import validate_template
from nestdeploy.utils.errors import (
    AttemptCancelledError,
    ErrorContext,
    InputError,
    NestDeployError,
    ProposalRejected,
    error_handler,
)
from nestdeploy.utils.logging import LogContext, get_logger
from nestdeploy.utils.polling import BackoffStrategy, poll_until

logger = get_logger(__name__)


class AttemptState(Enum):
    """States of a single deployment attempt."""
    START = "start"
    CONTAINER_CREATED = "container_created"
    STAGED = "staged"
    DEPLOYMENT_QUERIED = "deployment_queried"
    CREATE_PATH = "create_path"
    UPDATE_PATH = "update_path"
    FAILED = "failed"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


class DeploymentPath(Enum):
    """Branch taken once the deployment state is known."""
    CREATE = "create"
    UPDATE = "update"


@dataclass
class DeploymentAttempt:
    """Record of one split-upload-deploy attempt."""

    stack_name: str
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    container: Optional[str] = None
    root_location: Optional[str] = None
    path: Optional[DeploymentPath] = None
    proposal_name: Optional[str] = None
    stack_id: Optional[str] = None
    final_status: Optional[str] = None
    nested_templates: int = 0
    states: List[AttemptState] = field(default_factory=list)
    artifacts: List[StagedArtifact] = field(default_factory=list)
    release_report: Optional[ReleaseReport] = None
    error: Optional[NestDeployError] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    @property
    def state(self) -> Optional[AttemptState]:
        """Most recent state."""
        return self.states[-1] if self.states else None

    def is_success(self) -> bool:
        """Check if the attempt finished without error."""
        return self.state == AttemptState.DONE and self.error is None


# Called on every state transition with a short human-readable message
ProgressCallback = Callable[[AttemptState, str], None]


class DeploymentOrchestrator:
    """Coordinates splitting, staging and deploying a template.

    Staging is scoped to the attempt: the container and every object
    written into it are released on every exit path, success or failure.
    """

    def __init__(
        self,
        store: ArtifactStore,
        service: DeploymentService,
        config: Optional[DeployConfig] = None,
        classifier: Optional[Classifier] = None
    ):
        """Initialize deployment orchestrator.

        Args:
            store: Artifact store for staging containers and templates
            service: Deployment service for stack operations
            config: Configuration, defaults apply when omitted
            classifier: Classifier override, otherwise built from config
        """
        self.store = store
        self.service = service
        self.config = config or DeployConfig()
        self.splitter = TemplateSplitter(classifier or build_classifier(self.config.splitting))

        polling = self.config.polling
        self.strategy = BackoffStrategy(
            initial_delay=polling.initial_delay,
            max_delay=polling.max_delay,
            multiplier=polling.multiplier,
            max_attempts=polling.max_attempts,
            timeout=polling.timeout,
            jitter=polling.jitter,
        )

    def preview(self, template: Template) -> SplitResult:
        """Split a copy of the template without touching any service."""
        validate_template(template)
        return self.splitter.split(template.model_copy(deep=True))

    def deploy(
        self,
        stack_name: str,
        template: Template,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> DeploymentAttempt:
        """Split, stage and deploy a template as the named stack.

        Args:
            stack_name: Stack to create or update
            template: Template to deploy, left unmodified
            cancel_event: Optional caller-controlled cancellation signal
            progress_callback: Optional transition callback

        Returns:
            DeploymentAttempt describing the successful attempt

        Raises:
            NestDeployError: The first error of the attempt, raised after
                staging has been released
        """
        if not stack_name:
            raise InputError("Stack name is required")
        validate_template(template)

        cancel_event = cancel_event or threading.Event()
        attempt = DeploymentAttempt(stack_name=stack_name)

        with LogContext(logger, stack_name=stack_name, attempt=attempt.attempt_id):
            self._transition(attempt, AttemptState.START, "Starting deployment", progress_callback)

            try:
                self._check_cancelled(cancel_event)
                attempt.container = self.store.create_container()
            except NestDeployError as e:
                # Nothing staged yet, nothing to release
                self._fail(attempt, e, progress_callback)
                self._finish(attempt, progress_callback)
                raise

            releases = ReleaseStack()
            container = attempt.container
            releases.push(f"s3://{container}", lambda: self.store.delete_container(container))
            self._transition(
                attempt, AttemptState.CONTAINER_CREATED,
                f"Created staging container {container}", progress_callback
            )

            try:
                with releases:
                    try:
                        self._run(attempt, template, releases, cancel_event, progress_callback)
                    except NestDeployError as e:
                        self._fail(attempt, e, progress_callback)
                        raise
                    except KeyboardInterrupt:
                        self._fail(attempt, AttemptCancelledError("Deployment interrupted"), progress_callback)
                        raise
                    except Exception as e:
                        error = error_handler.wrap(
                            e, NestDeployError, ErrorContext(stack_name=stack_name, container=container)
                        )
                        self._fail(attempt, error, progress_callback)
                        raise error from e
                    finally:
                        self._transition(
                            attempt, AttemptState.CLEANING_UP,
                            f"Running {len(releases)} staging release action(s)", progress_callback
                        )
            finally:
                # Returns the report recorded when the block exited
                attempt.release_report = releases.release_all()
                self._finish(attempt, progress_callback)

        return attempt

    def _run(
        self,
        attempt: DeploymentAttempt,
        template: Template,
        releases: ReleaseStack,
        cancel_event: threading.Event,
        progress_callback: Optional[ProgressCallback]
    ) -> None:
        split = self.splitter.split(template.model_copy(deep=True))
        attempt.nested_templates = len(split.nested)

        self._check_cancelled(cancel_event)
        staging = StagingManager(
            self.store,
            releases,
            content_type=self.config.staging.content_type,
            max_workers=self.config.staging.upload_workers,
        )
        staged = staging.stage(attempt.container, attempt.stack_name, split)
        attempt.root_location = staged.root_location
        attempt.artifacts = staged.artifacts
        self._transition(
            attempt, AttemptState.STAGED,
            f"Staged {len(staged.artifacts)} template(s)", progress_callback
        )

        self._check_cancelled(cancel_event)
        current = self.service.describe(attempt.stack_name)
        self._transition(
            attempt, AttemptState.DEPLOYMENT_QUERIED,
            f"Stack {attempt.stack_name} is {'present' if current else 'absent'}", progress_callback
        )

        self._check_cancelled(cancel_event)
        if current is None:
            self._create_path(attempt, cancel_event, progress_callback)
        else:
            self._update_path(attempt, current, cancel_event, progress_callback)

    def _create_path(
        self,
        attempt: DeploymentAttempt,
        cancel_event: threading.Event,
        progress_callback: Optional[ProgressCallback]
    ) -> None:
        attempt.path = DeploymentPath.CREATE
        self._transition(
            attempt, AttemptState.CREATE_PATH,
            f"Creating stack {attempt.stack_name}", progress_callback
        )
        attempt.stack_id = self.service.create(attempt.stack_name, attempt.root_location)

        if self.config.deployment.wait_for_completion:
            self._wait_for_stack(attempt, cancel_event)

    def _update_path(
        self,
        attempt: DeploymentAttempt,
        current: StackDescription,
        cancel_event: threading.Event,
        progress_callback: Optional[ProgressCallback]
    ) -> None:
        attempt.path = DeploymentPath.UPDATE
        attempt.proposal_name = generate_proposal_name()
        self._transition(
            attempt, AttemptState.UPDATE_PATH,
            f"Proposing change set {attempt.proposal_name}", progress_callback
        )

        proposal_id = self.service.create_change_proposal(
            attempt.stack_name, attempt.proposal_name, attempt.root_location
        )
        status = poll_until(
            lambda: self.service.describe_change_proposal(proposal_id, attempt.stack_name),
            lambda s: s.is_terminal(),
            self.strategy,
            f"change set {attempt.proposal_name}",
            cancel_event=cancel_event,
        )

        if status.state == ProposalState.FAILED:
            raise ProposalRejected(
                status.reason or f"Change set {attempt.proposal_name} failed ({status.status})",
                context=ErrorContext(
                    stack_name=attempt.stack_name,
                    operation="describe_change_set",
                    additional_info={"proposal": attempt.proposal_name, "status": status.status},
                ),
            )

        self._check_cancelled(cancel_event)
        self.service.execute_change_proposal(proposal_id, attempt.stack_name)

        if self.config.deployment.wait_for_completion:
            self._wait_for_stack(attempt, cancel_event, previous=current)

    def _wait_for_stack(
        self,
        attempt: DeploymentAttempt,
        cancel_event: threading.Event,
        previous: Optional[StackDescription] = None
    ) -> None:
        """Wait for the stack to settle before staging is released."""
        final = self.service.wait_for_stack(
            attempt.stack_name, self.strategy, cancel_event, previous=previous
        )
        attempt.stack_id = attempt.stack_id or final.stack_id
        attempt.final_status = final.status

    def _check_cancelled(self, cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise AttemptCancelledError("Deployment cancelled")

    def _transition(
        self,
        attempt: DeploymentAttempt,
        state: AttemptState,
        message: str,
        progress_callback: Optional[ProgressCallback]
    ) -> None:
        attempt.states.append(state)
        logger.info(message, extra={"state": state.value})
        if progress_callback:
            progress_callback(state, message)

    def _fail(
        self,
        attempt: DeploymentAttempt,
        error: NestDeployError,
        progress_callback: Optional[ProgressCallback]
    ) -> None:
        attempt.error = error
        error.context.stack_name = error.context.stack_name or attempt.stack_name
        self._transition(attempt, AttemptState.FAILED, f"Deployment failed: {error}", progress_callback)

    def _finish(self, attempt: DeploymentAttempt, progress_callback: Optional[ProgressCallback]) -> None:
        attempt.end_time = datetime.now(timezone.utc)
        attempt.duration = (attempt.end_time - attempt.start_time).total_seconds()
        outcome = "failed" if attempt.error else "succeeded"
        self._transition(
            attempt, AttemptState.DONE,
            f"Deployment {outcome} in {attempt.duration:.1f}s", progress_callback
        )
