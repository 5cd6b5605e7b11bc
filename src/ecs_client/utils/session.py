"""
Session management utilities for AWS authentication.
"""

from typing import Optional

from rich.console import Console

from ..client import AWSClient
from .display import display_error, display_success, display_warning

console = Console()


def create_aws_client(
    region: Optional[str] = None,
    profile_name: Optional[str] = None,
    max_attempts: int = 5,
) -> Optional[AWSClient]:
    """
    Create and initialize an AWS client for a region and profile.

    Returns:
        AWSClient or None if initialization fails
    """
    try:
        return AWSClient(region=region, profile_name=profile_name, max_attempts=max_attempts)

    except Exception as e:
        display_error(f"Failed to initialize AWS client for region {region or '(default)'}: {e}")
        display_warning("Check AWS_PROFILE / AWS_REGION or the shared credentials file")
        return None


def display_connection_info(client: AWSClient) -> bool:
    """Display connection and configuration information."""
    console.print("[bold blue]🔗 Connection Information[/bold blue]")

    if not client.test_connection():
        display_error("✗ Failed to connect to AWS")
        return False
    display_success("✓ Successfully connected to AWS")

    console.print(f"[dim]Profile: {client.config.profile_name or 'default'}[/dim]")
    console.print(f"[dim]Region: {client.region or 'unknown'}[/dim]")
    return True
