"""
Error types raised by the release kit.

Validation problems are caught before any network call. Remote failures carry
the operation and resource they happened on so the CLI can print one
readable line.
"""

from typing import List, Optional, Sequence


class ReleaseKitError(Exception):
    """Base class for every error the CLI reports to the operator."""


class ValidationError(ReleaseKitError):
    """Local input failed a pre-flight check."""


class ManifestError(ValidationError):
    """album.toml is missing or malformed."""


class ConfigurationError(ReleaseKitError):
    """Credentials are missing or unusable."""


class ApiError(ReleaseKitError):
    """
    The platform answered with a non-success envelope.

    Attributes:
        operation: What we were doing (e.g. "create bucket")
        resource: Which remote resource it concerned
        status_code: HTTP status, when known
        messages: Error messages reported by the platform
    """

    def __init__(self, operation: str, resource: Optional[str] = None,
                 status_code: Optional[int] = None,
                 messages: Optional[Sequence[str]] = None):
        self.operation = operation
        self.resource = resource
        self.status_code = status_code
        self.messages = list(messages or [])
        super().__init__(self._format())

    @property
    def platform_message(self) -> str:
        if self.messages:
            return self.messages[0]
        return "Unknown Cloudflare API error"

    def _format(self) -> str:
        target = f" '{self.resource}'" if self.resource else ""
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"Failed to {self.operation}{target}{status}: {self.platform_message}"


class TransportError(ReleaseKitError):
    """The request never got a usable answer (timeout, connection reset)."""

    def __init__(self, operation: str, resource: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        self.operation = operation
        self.resource = resource
        self.cause = cause
        target = f" '{resource}'" if resource else ""
        super().__init__(f"Network error during {operation}{target}: {cause}")


class UploadAggregateError(ReleaseKitError):
    """One or more track uploads exhausted their retries."""

    def __init__(self, failed_tasks: List):
        self.failed_tasks = list(failed_tasks)
        lines = [f"{len(self.failed_tasks)} track upload(s) failed:"]
        for task in self.failed_tasks:
            lines.append(f"  - {task.track_title} ({task.key}): {task.last_error}")
        super().__init__("\n".join(lines))


class TeardownError(ReleaseKitError):
    """At least one resource could not be removed during teardown."""

    def __init__(self, failures: List[str], report=None):
        self.failures = list(failures)
        self.report = report
        super().__init__("Teardown incomplete:\n" + "\n".join(f"  - {f}" for f in self.failures))
