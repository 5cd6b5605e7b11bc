"""Main AWS client module with lazily created service clients."""

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from rich.console import Console
from tenacity import retry, stop_after_attempt, wait_exponential

from .models import AWSConfig
from .services.autoscaling import FleetService
from .services.ecs import ClusterService
from .services.elbv2 import LoadBalancerService
from .services.images import ImageRegistry

logger = logging.getLogger(__name__)
console = Console()


class AWSClient:
    """AWS client bundling the services the fleet upgrade needs."""

    def __init__(
        self,
        region: Optional[str] = None,
        profile_name: Optional[str] = None,
        max_attempts: int = 5,
        session: Optional[boto3.session.Session] = None,
    ):
        """
        Initialize the AWS session.

        Args:
            region: AWS region name (e.g., 'eu-west-1'). Falls back to the environment.
            profile_name: Named profile from the shared credentials file
            max_attempts: botocore retry budget for every service client
            session: Pre-built session, mostly useful in tests
        """
        self.config = AWSConfig(region=region, profile_name=profile_name, max_attempts=max_attempts)
        self.session = session or boto3.session.Session(**self.config.session_kwargs())
        self.botocore_config = Config(
            retries={"max_attempts": self.config.max_attempts, "mode": "standard"}
        )

        # Service clients will be initialized lazily
        self._clients: Dict[str, Any] = {}

    def _client(self, service_name: str) -> Any:
        if service_name not in self._clients:
            logger.debug("Creating %s client (region=%s)", service_name, self.region)
            self._clients[service_name] = self.session.client(
                service_name, config=self.botocore_config
            )
        return self._clients[service_name]

    @property
    def region(self) -> Optional[str]:
        return self.config.region or self.session.region_name

    @property
    def autoscaling_client(self) -> Any:
        """Lazy-load autoscaling client."""
        return self._client("autoscaling")

    @property
    def ec2_client(self) -> Any:
        """Lazy-load EC2 client."""
        return self._client("ec2")

    @property
    def ecs_client(self) -> Any:
        """Lazy-load ECS client."""
        return self._client("ecs")

    @property
    def elbv2_client(self) -> Any:
        """Lazy-load ELBv2 client."""
        return self._client("elbv2")

    @property
    def sts_client(self) -> Any:
        """Lazy-load STS client."""
        return self._client("sts")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def get_caller_identity(self) -> Dict[str, Any]:
        """Return the account and ARN behind the current credentials."""
        return self.sts_client.get_caller_identity()

    def test_connection(self) -> bool:
        """Test if the credentials resolve to an AWS identity."""
        try:
            identity = self.get_caller_identity()
            console.print(
                f"[green]✓[/green] Connection test successful. "
                f"Account {identity.get('Account')} as {identity.get('Arn')}."
            )
            return True
        except Exception as e:
            console.print(f"[red]✗[/red] Connection test failed: {e}")
            return False

    def fleet_service(self) -> FleetService:
        return FleetService(self.autoscaling_client, self.ec2_client)

    def image_registry(self) -> ImageRegistry:
        return ImageRegistry(self.ec2_client)

    def cluster_service(self) -> ClusterService:
        return ClusterService(self.ecs_client)

    def load_balancer_service(self) -> LoadBalancerService:
        return LoadBalancerService(self.elbv2_client)
