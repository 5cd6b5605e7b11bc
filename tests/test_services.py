"""Tests for service modules."""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from ecs_client.client import AWSClient
from ecs_client.exceptions import ImageNotFoundError, ProviderError, ProvisioningError
from ecs_client.models import ImageCriteria, LaunchIdentifier
from ecs_client.services.autoscaling import FleetService, launch_identifier_from
from ecs_client.services.ecs import ClusterService
from ecs_client.services.elbv2 import LoadBalancerService
from ecs_client.services.images import ImageRegistry


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Skip tenacity backoff sleeps for the retried describe calls."""
    for func in (
        FleetService._describe_group,
        FleetService._describe_autoscaling_instances,
        FleetService.private_addresses,
        ImageRegistry.latest_image,
        LoadBalancerService.target_health,
    ):
        monkeypatch.setattr(func.retry, "sleep", lambda seconds: None)


class TestLaunchIdentifierFrom:
    """Test launch definition parsing from describe responses."""

    def test_launch_configuration(self):
        assert launch_identifier_from({"LaunchConfigurationName": "lc"}) == LaunchIdentifier.configuration("lc")

    def test_launch_template(self):
        data = {"LaunchTemplate": {"LaunchTemplateName": "lt", "Version": "3"}}
        assert launch_identifier_from(data) == LaunchIdentifier.template("lt", "3")

    def test_mixed_instances_policy_defaults_version(self):
        data = {
            "MixedInstancesPolicy": {
                "LaunchTemplate": {"LaunchTemplateSpecification": {"LaunchTemplateName": "lt"}}
            }
        }
        assert launch_identifier_from(data) == LaunchIdentifier.template("lt", "$Default")

    def test_nothing_bound(self):
        assert launch_identifier_from({}).is_empty


class TestFleetService:
    """Test autoscaling group operations."""

    @pytest.fixture
    def fleet_service(self):
        return FleetService(Mock(), Mock())

    def test_describe_fleet(self, fleet_service):
        fleet_service.autoscaling_client.describe_auto_scaling_groups.return_value = {
            "AutoScalingGroups": [
                {"DesiredCapacity": 3, "MinSize": 1, "MaxSize": 6, "LaunchConfigurationName": "lc"}
            ]
        }

        fleet = fleet_service.describe_fleet("ecs-asg")

        assert fleet.desired_capacity == 3
        assert fleet.max_size == 6
        assert fleet.launch_identifier == LaunchIdentifier.configuration("lc")

    def test_describe_missing_group(self, fleet_service):
        fleet_service.autoscaling_client.describe_auto_scaling_groups.return_value = {"AutoScalingGroups": []}

        with pytest.raises(ProviderError, match="not found"):
            fleet_service.describe_fleet("ecs-asg")

    def test_describe_retries_throttling(self, fleet_service):
        fleet_service.autoscaling_client.describe_auto_scaling_groups.side_effect = [
            client_error("Throttling"),
            {"AutoScalingGroups": [{"DesiredCapacity": 1, "MinSize": 1, "MaxSize": 1}]},
        ]

        fleet = fleet_service.describe_fleet("ecs-asg")

        assert fleet.desired_capacity == 1
        assert fleet_service.autoscaling_client.describe_auto_scaling_groups.call_count == 2

    def test_describe_does_not_retry_other_errors(self, fleet_service):
        fleet_service.autoscaling_client.describe_auto_scaling_groups.side_effect = client_error("AccessDenied")

        with pytest.raises(ProviderError, match="AccessDenied"):
            fleet_service.describe_fleet("ecs-asg")
        assert fleet_service.autoscaling_client.describe_auto_scaling_groups.call_count == 1

    def test_list_nodes_batches_instance_lookups(self, fleet_service):
        instance_ids = [f"i-{n:03d}" for n in range(120)]
        fleet_service.autoscaling_client.describe_auto_scaling_groups.return_value = {
            "AutoScalingGroups": [{"Instances": [{"InstanceId": i} for i in instance_ids]}]
        }
        autoscaling_paginator = fleet_service.autoscaling_client.get_paginator.return_value
        autoscaling_paginator.paginate.side_effect = lambda InstanceIds: [
            {
                "AutoScalingInstances": [
                    {
                        "InstanceId": i,
                        "LaunchConfigurationName": "lc",
                        "HealthStatus": "HEALTHY",
                        "LifecycleState": "InService",
                    }
                    for i in InstanceIds
                ]
            }
        ]

        nodes = fleet_service.list_nodes("ecs-asg")

        batch_sizes = [len(call.kwargs["InstanceIds"]) for call in autoscaling_paginator.paginate.call_args_list]
        assert batch_sizes == [50, 50, 20]
        assert len(nodes) == 120
        assert nodes[0].launch_identifier == LaunchIdentifier.configuration("lc")
        assert nodes[0].is_in_service
        assert nodes[0].private_ips == []
        fleet_service.ec2_client.get_paginator.assert_not_called()

    def test_private_addresses_batches_and_collects_every_ip(self, fleet_service):
        instance_ids = [f"i-{n:03d}" for n in range(120)]
        ec2_paginator = fleet_service.ec2_client.get_paginator.return_value
        ec2_paginator.paginate.side_effect = lambda InstanceIds: [
            {
                "Reservations": [
                    {
                        "Instances": [
                            {
                                "InstanceId": i,
                                "PrivateIpAddress": f"10.0.{n // 100}.{n % 100}",
                                "NetworkInterfaces": [
                                    {"PrivateIpAddresses": [{"PrivateIpAddress": "172.16.0.1"}]}
                                ],
                            }
                            for n, i in enumerate(InstanceIds)
                        ]
                    }
                ]
            }
        ]

        addresses = fleet_service.private_addresses(instance_ids)

        batch_sizes = [len(call.kwargs["InstanceIds"]) for call in ec2_paginator.paginate.call_args_list]
        assert batch_sizes == [100, 20]
        assert addresses["i-000"] == ["10.0.0.0", "172.16.0.1"]
        assert len(addresses) == 120

    def test_private_addresses_skips_instances_ec2_has_not_indexed(self, fleet_service):
        ec2_paginator = fleet_service.ec2_client.get_paginator.return_value
        ec2_paginator.paginate.side_effect = client_error("InvalidInstanceID.NotFound", "DescribeInstances")

        assert fleet_service.private_addresses(["i-new"]) == {}

    def test_private_addresses_other_errors(self, fleet_service):
        ec2_paginator = fleet_service.ec2_client.get_paginator.return_value
        ec2_paginator.paginate.side_effect = client_error("UnauthorizedOperation", "DescribeInstances")

        with pytest.raises(ProviderError, match="UnauthorizedOperation"):
            fleet_service.private_addresses(["i-new"])

    def test_get_missing_launch_configuration(self, fleet_service):
        fleet_service.autoscaling_client.describe_launch_configurations.return_value = {
            "LaunchConfigurations": []
        }
        with pytest.raises(ProvisioningError):
            fleet_service.get_launch_configuration("lc")

    def test_create_launch_configuration_failure(self, fleet_service):
        fleet_service.autoscaling_client.create_launch_configuration.side_effect = client_error(
            "AlreadyExists"
        )
        with pytest.raises(ProvisioningError):
            fleet_service.create_launch_configuration({"InstanceType": "t3.large"}, "lc-new", "ami-1")

    def test_create_launch_template_version_sets_default(self, fleet_service):
        fleet_service.ec2_client.create_launch_template_version.return_value = {
            "LaunchTemplateVersion": {"VersionNumber": 5}
        }

        identifier = fleet_service.create_launch_template_version(
            {"LaunchTemplateName": "lt", "VersionNumber": 4}, "lt-upgrade", "ami-1"
        )

        assert identifier == LaunchIdentifier.template("lt", "5")
        fleet_service.ec2_client.create_launch_template_version.assert_called_once_with(
            LaunchTemplateName="lt",
            SourceVersion="4",
            VersionDescription="lt-upgrade",
            LaunchTemplateData={"ImageId": "ami-1"},
        )
        fleet_service.ec2_client.modify_launch_template.assert_called_once_with(
            LaunchTemplateName="lt", DefaultVersion="5"
        )

    def test_bind_launch_template(self, fleet_service):
        fleet_service.bind_launch_identifier("ecs-asg", LaunchIdentifier.template("lt", "5"))

        fleet_service.autoscaling_client.update_auto_scaling_group.assert_called_once_with(
            AutoScalingGroupName="ecs-asg",
            LaunchTemplate={"LaunchTemplateName": "lt", "Version": "5"},
        )

    def test_set_desired_capacity_with_max(self, fleet_service):
        fleet_service.set_desired_capacity("ecs-asg", 8, max_size=8)

        fleet_service.autoscaling_client.update_auto_scaling_group.assert_called_once_with(
            AutoScalingGroupName="ecs-asg", DesiredCapacity=8, MaxSize=8
        )

    def test_scaling_is_never_retried(self, fleet_service):
        fleet_service.autoscaling_client.update_auto_scaling_group.side_effect = client_error("Throttling")

        with pytest.raises(ProviderError):
            fleet_service.set_desired_capacity("ecs-asg", 4)
        assert fleet_service.autoscaling_client.update_auto_scaling_group.call_count == 1

    def test_delete_launch_configuration(self, fleet_service):
        fleet_service.delete_launch_definition(LaunchIdentifier.configuration("lc"))

        fleet_service.autoscaling_client.delete_launch_configuration.assert_called_once_with(
            LaunchConfigurationName="lc"
        )

    def test_delete_launch_template_version_failure(self, fleet_service):
        fleet_service.ec2_client.delete_launch_template_versions.return_value = {
            "UnsuccessfullyDeletedLaunchTemplateVersions": [
                {"VersionNumber": 1, "ResponseError": {"Message": "is the default version"}}
            ]
        }

        with pytest.raises(ProviderError, match="is the default version"):
            fleet_service.delete_launch_definition(LaunchIdentifier.template("lt", "1"))


class TestImageRegistry:
    """Test image lookup."""

    def test_picks_newest_image(self):
        ec2 = Mock()
        ec2.describe_images.return_value = {
            "Images": [
                {"ImageId": "ami-1", "CreationDate": "2024-01-01T00:00:00.000Z"},
                {"ImageId": "ami-3", "CreationDate": "2024-03-01T00:00:00.000Z"},
                {"ImageId": "ami-2", "CreationDate": "2024-02-01T00:00:00.000Z"},
            ]
        }

        assert ImageRegistry(ec2).latest_image_id(ImageCriteria()) == "ami-3"
        kwargs = ec2.describe_images.call_args.kwargs
        assert kwargs["Owners"] == ["591542846629"]
        assert {"Name": "name", "Values": ["amzn-ami-*-amazon-ecs-optimized"]} in kwargs["Filters"]

    def test_no_match(self):
        ec2 = Mock()
        ec2.describe_images.return_value = {"Images": []}

        with pytest.raises(ImageNotFoundError):
            ImageRegistry(ec2).latest_image_id(ImageCriteria())


class TestClusterService:
    """Test ECS operations."""

    @pytest.fixture
    def cluster_service(self):
        return ClusterService(Mock())

    def test_membership(self, cluster_service):
        ecs = cluster_service.ecs_client
        ecs.get_paginator.return_value.paginate.return_value = [
            {"containerInstanceArns": ["arn:ci/1", "arn:ci/2"]}
        ]
        ecs.describe_container_instances.return_value = {
            "containerInstances": [
                {"containerInstanceArn": "arn:ci/1", "ec2InstanceId": "i-1", "runningTasksCount": 2, "status": "ACTIVE"},
                {"containerInstanceArn": "arn:ci/2", "ec2InstanceId": "i-2", "runningTasksCount": 0, "status": "DRAINING"},
            ],
            "failures": [],
        }

        membership = cluster_service.membership("prod")

        assert membership.member_for_node("i-1").running_workloads == 2
        assert membership.node_for_member("arn:ci/2") == "i-2"

    def test_empty_cluster_skips_describe(self, cluster_service):
        ecs = cluster_service.ecs_client
        ecs.get_paginator.return_value.paginate.return_value = [{"containerInstanceArns": []}]

        assert len(cluster_service.membership("prod")) == 0
        ecs.describe_container_instances.assert_not_called()

    def test_describe_members_batches(self, cluster_service):
        ecs = cluster_service.ecs_client
        ecs.describe_container_instances.return_value = {"containerInstances": [], "failures": []}

        cluster_service.describe_members("prod", [f"arn:ci/{n}" for n in range(150)])

        sizes = [len(call.kwargs["containerInstances"]) for call in ecs.describe_container_instances.call_args_list]
        assert sizes == [100, 50]

    def test_set_draining_failure(self, cluster_service):
        cluster_service.ecs_client.update_container_instances_state.return_value = {
            "containerInstances": [],
            "failures": [{"arn": "arn:ci/1", "reason": "MISSING"}],
        }

        with pytest.raises(ProviderError, match="MISSING"):
            cluster_service.set_draining("prod", "arn:ci/1")

    def test_workload_network_addresses(self, cluster_service):
        cluster_service.ecs_client.describe_tasks.return_value = {
            "tasks": [
                {
                    "containerInstanceArn": "arn:ci/1",
                    "attachments": [
                        {
                            "type": "ElasticNetworkInterface",
                            "details": [
                                {"name": "subnetId", "value": "subnet-1"},
                                {"name": "privateIPv4Address", "value": "10.1.0.9"},
                            ],
                        }
                    ],
                    "containers": [{"networkInterfaces": [{"privateIpv4Address": "10.1.0.9"}]}],
                },
                {"containerInstanceArn": "arn:ci/2", "attachments": [], "containers": []},
                {"attachments": []},
            ]
        }

        addresses = cluster_service.workload_network_addresses("prod", ["t1", "t2", "t3"])

        assert addresses == {"arn:ci/1": ["10.1.0.9"], "arn:ci/2": []}


class TestLoadBalancerService:
    """Test ELBv2 lookups."""

    def test_target_health(self):
        elbv2 = Mock()
        elbv2.describe_target_health.return_value = {
            "TargetHealthDescriptions": [
                {"Target": {"Id": "i-1", "Port": 80}, "TargetHealth": {"State": "healthy"}},
                {"Target": {"Id": "10.1.0.9", "Port": 8080}, "TargetHealth": {"State": "unhealthy"}},
            ]
        }

        records = LoadBalancerService(elbv2).target_health("arn:tg")

        assert [(record.key, record.state) for record in records] == [
            ("i-1", "healthy"),
            ("10.1.0.9", "unhealthy"),
        ]

    def test_list_target_groups(self):
        elbv2 = Mock()
        elbv2.get_paginator.return_value.paginate.return_value = [
            {"TargetGroups": [{"TargetGroupArn": "arn:tg/1"}]},
            {"TargetGroups": [{"TargetGroupArn": "arn:tg/2"}]},
        ]

        assert LoadBalancerService(elbv2).list_target_groups() == ["arn:tg/1", "arn:tg/2"]


class TestAWSClient:
    """Test the AWS client wrapper."""

    def test_service_clients_are_created_once(self):
        session = Mock()
        session.region_name = "eu-west-1"
        client = AWSClient(session=session)

        assert client.ecs_client is client.ecs_client
        session.client.assert_called_once()
        assert session.client.call_args.args == ("ecs",)
        assert client.region == "eu-west-1"

    def test_fleet_service_wires_clients(self):
        session = Mock()
        client = AWSClient(region="us-east-1", session=session)

        service = client.fleet_service()

        assert isinstance(service, FleetService)
        assert client.region == "us-east-1"

    def test_connection(self):
        session = Mock()
        session.client.return_value.get_caller_identity.return_value = {
            "Account": "123456789012",
            "Arn": "arn:aws:iam::123456789012:user/ops",
        }

        assert AWSClient(session=session).test_connection() is True

    def test_connection_failure_is_retried_then_reported(self, monkeypatch):
        monkeypatch.setattr(AWSClient.get_caller_identity.retry, "sleep", lambda seconds: None)
        session = Mock()
        sts = session.client.return_value
        sts.get_caller_identity.side_effect = client_error("ExpiredToken")

        assert AWSClient(session=session).test_connection() is False
        assert sts.get_caller_identity.call_count == 3
