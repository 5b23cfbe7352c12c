"""Error taxonomy for the content layer.

Everything here is allowed to escape to the caller. Missing posts are not an
error on the read path: getters return ``None`` instead.
"""

from __future__ import annotations


class BlogkitError(Exception):
    """Base class for every error raised by blogkit."""


class ConfigurationError(BlogkitError):
    """A setting required by the selected provider is missing or invalid."""

    def __init__(self, setting: str, message: str | None = None) -> None:
        self.setting = setting
        if message is None:
            message = f"{setting} must be set for the selected CMS provider"
        super().__init__(message)


class RemoteRequestError(BlogkitError):
    """A remote backend answered with a non-2xx status or could not be reached."""

    def __init__(
        self,
        operation: str,
        status_code: int | None = None,
        detail: str = "",
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        status = status_code if status_code is not None else "no response"
        message = f"{operation} failed ({status})"
        if detail:
            message += f" - {detail[:500]}"
        super().__init__(message)


class InvalidArgumentError(BlogkitError, ValueError):
    """Malformed id, empty slug or out-of-range pagination input."""


class WriteAuthorizationError(BlogkitError):
    """A write was attempted without the provider's write credential configured."""

    def __init__(self, provider: str, setting: str) -> None:
        self.provider = provider
        self.setting = setting
        super().__init__(f"{setting} is required for write operations on the {provider} provider")


class PostNotFoundError(BlogkitError):
    """An update targeted a post that does not exist."""

    def __init__(self, post_id: str) -> None:
        self.post_id = post_id
        super().__init__(f"post {post_id} not found")
