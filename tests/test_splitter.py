"""Tests for classifiers and the template splitter."""

import pytest

from nestdeploy.config.models import SplittingSettings
from nestdeploy.splitter.classifier import (
    HotTypeClassifier,
    PerTypeClassifier,
    RuleTableClassifier,
    build_classifier,
    partition_key,
)
from nestdeploy.splitter.splitter import TemplateSplitter
from nestdeploy.template.models import STACK_REFERENCE_TYPE, Resource, new_stack_reference
from nestdeploy.utils.errors import InputError, SplitError

from conftest import make_template


class TestPartitionKey:
    """Test cases for partition key derivation."""

    def test_strips_separators(self):
        """Test type tags become alphanumeric keys."""
        assert partition_key("AWS::ECS::Service") == "AWSECSService"
        assert partition_key("Custom::My-Thing") == "CustomMyThing"

    def test_empty_key_rejected(self):
        """Test tags without alphanumerics cannot be partitioned."""
        with pytest.raises(InputError):
            partition_key("::")


class TestClassifiers:
    """Test cases for classifier strategies."""

    def test_hot_types_default(self):
        """Test only hot types are partitioned by default."""
        classifier = HotTypeClassifier()

        assert classifier.classify(Resource(name="S", type="AWS::ECS::Service")) == "AWSECSService"
        assert classifier.classify(Resource(name="B", type="AWS::S3::Bucket")) is None

    def test_classification_depends_on_type_only(self):
        """Test two resources of the same type get the same key, repeatedly."""
        classifier = HotTypeClassifier()
        first = Resource(name="A", type="AWS::ECS::TaskDefinition", properties={"Cpu": 256})
        second = Resource(name="B", type="AWS::ECS::TaskDefinition", attributes={"DependsOn": "A"})

        keys = {classifier.classify(first), classifier.classify(second), classifier.classify(first)}

        assert keys == {"AWSECSTaskDefinition"}

    def test_per_type_with_exclusions(self):
        """Test excluded patterns stay in the root."""
        classifier = PerTypeClassifier(exclude=["AWS::IAM::*"])

        assert classifier.classify(Resource(name="Q", type="AWS::SQS::Queue")) == "AWSSQSQueue"
        assert classifier.classify(Resource(name="R", type="AWS::IAM::Role")) is None

    def test_rule_table_first_match_wins(self):
        """Test rules are evaluated in order."""
        classifier = RuleTableClassifier({
            "AWS::ECS::Service": "Services",
            "AWS::ECS::*": "Ecs",
        })

        assert classifier.classify(Resource(name="S", type="AWS::ECS::Service")) == "Services"
        assert classifier.classify(Resource(name="T", type="AWS::ECS::TaskDefinition")) == "Ecs"
        assert classifier.classify(Resource(name="B", type="AWS::S3::Bucket")) is None

    def test_build_from_settings(self):
        """Test configuration selects the classifier."""
        assert isinstance(build_classifier(SplittingSettings()), HotTypeClassifier)
        assert isinstance(build_classifier(SplittingSettings(strategy="per-type")), PerTypeClassifier)

        rules = build_classifier(SplittingSettings(strategy="rules", rules={"AWS::Lambda::*": "Functions"}))
        assert isinstance(rules, RuleTableClassifier)


class TestTemplateSplitter:
    """Test cases for TemplateSplitter."""

    def test_default_classifier(self):
        """Test hot types are used when no classifier is given."""
        assert isinstance(TemplateSplitter().classifier, HotTypeClassifier)
        assert isinstance(TemplateSplitter(None).classifier, HotTypeClassifier)

    def test_single_hot_resource(self, sample_template):
        """Test one hot resource among five produces one nested template."""
        result = TemplateSplitter().split(sample_template)

        assert list(result.nested) == ["AWSECSService"]
        nested = result.nested["AWSECSService"]
        assert list(nested.template.resources) == ["Service"]
        assert nested.file_name == "template.AWSECSService.yaml"

        assert len(result.root.resources) == 5
        assert set(result.root.resources) == {
            "Cluster", "Bucket", "Role", "Queue", "AWSECSServiceNestedStack"
        }
        reference = result.reference_for("AWSECSService")
        assert reference.type == STACK_REFERENCE_TYPE
        assert reference.template_url is None
        assert result.moved == {"Service": "AWSECSService"}
        assert result.get_total_templates() == 2

    def test_resources_are_conserved(self):
        """Test every original resource lands in exactly one template."""
        template = make_template(
            ("Service1", "AWS::ECS::Service"),
            ("Service2", "AWS::ECS::Service"),
            ("Task", "AWS::ECS::TaskDefinition"),
            ("Discovery", "AWS::ServiceDiscovery::Service"),
            ("Bucket", "AWS::S3::Bucket"),
            ("Topic", "AWS::SNS::Topic"),
        )
        original = set(template.resources)

        result = TemplateSplitter().split(template)

        references = {r.name for r in result.root.stack_references()}
        names = [n for n in result.root.resources if n not in references]
        for nested in result.nested.values():
            names.extend(nested.template.resources)

        assert len(names) == len(set(names))
        assert set(names) == original
        assert len(result.nested) == 3
        assert len(references) == 3

    def test_nested_templates_inherit_metadata(self, sample_template):
        """Test nested templates carry the root's metadata fields."""
        sample_template.sections["Parameters"] = {"Env": {"Type": "String"}}

        result = TemplateSplitter().split(sample_template)
        nested = result.nested["AWSECSService"].template

        assert nested.format_version == sample_template.format_version
        assert nested.description == "test template"
        assert "Parameters" not in nested.sections

    def test_no_partitionable_resources(self):
        """Test templates without hot types are left alone."""
        template = make_template(("Bucket", "AWS::S3::Bucket"), ("Queue", "AWS::SQS::Queue"))

        result = TemplateSplitter().split(template)

        assert result.nested == {}
        assert set(result.root.resources) == {"Bucket", "Queue"}

    def test_existing_stack_references_stay_in_root(self):
        """Test user-declared nested stacks are never partitioned."""
        template = make_template(("Service", "AWS::ECS::Service"))
        existing = Resource(name="Network", type=STACK_REFERENCE_TYPE,
                            properties={"TemplateURL": "https://example/network.yaml"})
        template.add_resource(existing)

        result = TemplateSplitter(PerTypeClassifier()).split(template)

        assert "Network" in result.root.resources
        assert list(result.nested) == ["AWSECSService"]

    def test_reference_name_collision(self):
        """Test a root resource already using a reference name is an error."""
        template = make_template(("Service", "AWS::ECS::Service"))
        template.add_resource(Resource(name="AWSECSServiceNestedStack", type="AWS::SNS::Topic"))

        with pytest.raises(SplitError, match="reserved"):
            TemplateSplitter().split(template)

        assert template.has_resource("Service")

    def test_reference_name_taken_by_moved_resource(self):
        """Test a colliding name is fine when that resource moves out too."""
        template = make_template(
            ("Service", "AWS::ECS::Service"),
            ("AWSECSServiceNestedStack", "AWS::ECS::Service"),
        )

        result = TemplateSplitter().split(template)

        assert set(result.nested["AWSECSService"].template.resources) == {
            "Service", "AWSECSServiceNestedStack"
        }
        assert result.root.get_resource("AWSECSServiceNestedStack").is_stack_reference

    def test_oversized_templates_reported(self):
        """Test templates above the ceiling are reported."""
        template = make_template(*[(f"Queue{i}", "AWS::SQS::Queue") for i in range(501)])

        result = TemplateSplitter().split(template)

        assert result.oversized() == ["root"]

    def test_rules_group_several_types(self):
        """Test rule tables can share one nested template between types."""
        template = make_template(
            ("Service", "AWS::ECS::Service"),
            ("Task", "AWS::ECS::TaskDefinition"),
            ("Bucket", "AWS::S3::Bucket"),
        )
        classifier = RuleTableClassifier({"AWS::ECS::*": "Ecs"})

        result = TemplateSplitter(classifier).split(template)

        assert list(result.nested) == ["Ecs"]
        assert set(result.nested["Ecs"].template.resources) == {"Service", "Task"}
        assert set(result.root.resources) == {"Bucket", "EcsNestedStack"}

    def test_stack_reference_helper_matches_split(self):
        """Test the reference inserted by the splitter matches the helper."""
        result = TemplateSplitter().split(make_template(("Service", "AWS::ECS::Service")))

        assert result.reference_for("AWSECSService").name == new_stack_reference("AWSECSService").name
