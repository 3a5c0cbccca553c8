"""Uploads split templates to the staging container."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List

import yaml

from nestdeploy.splitter.splitter import NestedTemplate, SplitResult
from nestdeploy.staging.release import ReleaseReport, ReleaseStack
from nestdeploy.staging.store import ArtifactStore
from nestdeploy.template.models import TEMPLATE_URL_PROPERTY, Template
from nestdeploy.utils.errors import ErrorContext, NestDeployError, StagingError
from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)

ROOT_TEMPLATE_NAME = "template.yaml"


@dataclass
class StagedArtifact:
    """One uploaded template document."""

    container: str
    key: str
    location: str
    size: int


@dataclass
class StagedTemplates:
    """Everything staged for one attempt."""

    root_location: str
    artifacts: List[StagedArtifact] = field(default_factory=list)
    release_all: Callable[[], ReleaseReport] = None


def object_key(stack_name: str, name: str) -> str:
    """Key of a template object inside the staging container."""
    return f"{stack_name}/{name}"


class StagingManager:
    """Uploads nested templates, patches stack references, then uploads the root.

    Every object's delete action is recorded on the attempt's ReleaseStack
    before the object is written, so a failure at any point leaves nothing
    unaccounted for.
    """

    def __init__(
        self,
        store: ArtifactStore,
        releases: ReleaseStack,
        content_type: str = "application/yaml",
        max_workers: int = 4
    ):
        """Initialize staging manager.

        Args:
            store: Artifact store to upload into
            releases: Release actions owned by the current attempt
            content_type: Content type of uploaded templates
            max_workers: Maximum concurrent nested uploads
        """
        self.store = store
        self.releases = releases
        self.content_type = content_type
        self.max_workers = max_workers

    def stage(self, container: str, stack_name: str, split: SplitResult) -> StagedTemplates:
        """Upload every template produced by a split.

        Args:
            container: Staging container created for this attempt
            stack_name: Stack the templates belong to
            split: Split result; its stack references are patched in place

        Returns:
            StagedTemplates with the root template location

        Raises:
            StagingError: If serialization or any upload fails
        """
        nested_artifacts = self._stage_nested(container, stack_name, split)

        unpatched = [r.name for r in split.root.stack_references() if not r.template_url]
        if unpatched:
            raise StagingError(
                f"Stack references without a template location: {', '.join(unpatched)}",
                context=ErrorContext(stack_name=stack_name, container=container),
            )

        root_artifact = self._upload(
            container, object_key(stack_name, ROOT_TEMPLATE_NAME), split.root
        )

        artifacts = nested_artifacts + [root_artifact]
        logger.info(f"Staged {len(artifacts)} template(s) in {container}")

        return StagedTemplates(
            root_location=root_artifact.location,
            artifacts=artifacts,
            release_all=self.releases.release_all,
        )

    def _stage_nested(
        self,
        container: str,
        stack_name: str,
        split: SplitResult
    ) -> List[StagedArtifact]:
        nested: List[NestedTemplate] = list(split.nested.values())
        if not nested:
            return []

        results: Dict[str, StagedArtifact] = {}
        errors: List[NestDeployError] = []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(nested))) as executor:
            future_to_nested = {}
            for item in nested:
                key = object_key(stack_name, item.file_name)
                body = self._serialize(item.template, container, key)
                self._record_release(container, key)
                future = executor.submit(self._put, container, key, body)
                future_to_nested[future] = item

            # Barrier: the root is only touched after every nested upload settled
            for future in as_completed(future_to_nested):
                item = future_to_nested[future]
                try:
                    artifact = future.result()
                except NestDeployError as e:
                    errors.append(e)
                    continue
                split.reference_for(item.key).properties[TEMPLATE_URL_PROPERTY] = artifact.location
                results[item.key] = artifact

        if errors:
            raise errors[0]

        return [results[item.key] for item in nested]

    def _upload(self, container: str, key: str, template: Template) -> StagedArtifact:
        body = self._serialize(template, container, key)
        self._record_release(container, key)
        return self._put(container, key, body)

    def _put(self, container: str, key: str, body: bytes) -> StagedArtifact:
        location = self.store.put(container, key, body, self.content_type)
        return StagedArtifact(container=container, key=key, location=location, size=len(body))

    def _record_release(self, container: str, key: str) -> None:
        self.releases.push(
            f"s3://{container}/{key}",
            lambda: self.store.delete(container, key),
        )

    def _serialize(self, template: Template, container: str, key: str) -> bytes:
        try:
            return template.to_yaml()
        except yaml.YAMLError as e:
            raise StagingError(
                f"Failed to serialize {key}: {e}",
                context=ErrorContext(container=container, key=key, operation="serialize"),
                cause=e,
            ) from e
