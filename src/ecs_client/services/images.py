"""Approved node image lookup."""

import logging
from datetime import datetime
from typing import Any, Dict

from ..exceptions import ImageNotFoundError, ProviderError
from ..models import ImageCriteria
from .base import AWS_ERRORS, throttle_retry

logger = logging.getLogger(__name__)

CREATION_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _creation_time(image: Dict[str, Any]) -> datetime:
    return datetime.strptime(image["CreationDate"], CREATION_DATE_FORMAT)


class ImageRegistry:
    """Finds the most recently created image matching the approved criteria."""

    def __init__(self, ec2_client: Any):
        self.ec2_client = ec2_client

    @throttle_retry
    def latest_image(self, criteria: ImageCriteria) -> Dict[str, Any]:
        """Return the newest matching image description."""
        try:
            response = self.ec2_client.describe_images(
                Owners=list(criteria.owners), Filters=criteria.filters()
            )
        except AWS_ERRORS as exc:
            logger.error("Failed to describe images: %s", exc)
            raise ProviderError(f"Failed to describe images: {exc}") from exc

        images = [image for image in response.get("Images", []) if image.get("CreationDate")]
        if not images:
            raise ImageNotFoundError(
                f"No image found matching name={criteria.name_pattern} "
                f"virtualization={criteria.virtualization_type} owners={','.join(criteria.owners)}"
            )
        latest = max(images, key=_creation_time)
        logger.debug("Latest approved image: %s (%s)", latest["ImageId"], latest.get("Name"))
        return latest

    def latest_image_id(self, criteria: ImageCriteria) -> str:
        return self.latest_image(criteria)["ImageId"]
