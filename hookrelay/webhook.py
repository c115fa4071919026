"""Narrow parsing contract for GitHub push notifications.

Only the two fields the relay needs are read; the rest of the payload is
ignored and forwarded untouched.
"""

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hookrelay.exceptions import ParseError
from hookrelay.source import mount_name


class RepositoryRef(BaseModel):
    """The ``repository`` object of a push notification."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    full_name: str = Field(min_length=1)


class WebhookNotification(BaseModel):
    """A parsed push notification.

    Attributes:
        repository: Repository the push happened on.
        after: Commit the ref points to after the push.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    repository: RepositoryRef
    after: str = Field(min_length=1)

    @property
    def full_name(self) -> str:
        return self.repository.full_name

    @property
    def repo_name(self) -> str:
        return mount_name(self.repository.full_name)


def parse_notification(body: bytes) -> WebhookNotification:
    """Parse a push notification from a raw request body.

    Args:
        body: Raw JSON request body.

    Returns:
        The parsed notification.

    Raises:
        ParseError: If the body is not JSON or a required field is missing or empty.
    """
    try:
        return WebhookNotification.model_validate_json(body)
    except ValidationError as exc:
        raise ParseError(f"Invalid webhook payload: {exc}") from exc
