"""Exception taxonomy for the relay.

Every error carries the pipeline ``stage`` that failed and the HTTP
status it maps to when raised while serving a request.
"""


class RelayServiceError(Exception):
    """Base class for all relay errors.

    Attributes:
        stage: Pipeline stage that failed.
        status_code: HTTP status returned to the caller.
    """

    stage = "relay"
    status_code = 500


class StartupError(RelayServiceError):
    """Raised when the relay cannot start serving.

    Template build failures, unreadable or empty hooks files and a static
    environment that never comes up are all fatal.
    """

    stage = "startup"


class ParseError(RelayServiceError):
    """Raised when a webhook body is not a usable push notification.

    HTTP Status: 500 Internal Server Error
    """

    stage = "parse"


class ResolveError(RelayServiceError):
    """Raised when a repository commit cannot be fetched.

    HTTP Status: 500 Internal Server Error
    """

    stage = "resolve"

    def __init__(self, full_name: str, commit: str, reason: str):
        """Initialize ResolveError.

        Args:
            full_name: Repository identifier in ``owner/name`` form.
            commit: Commit reference that was requested.
            reason: Explanation of the failure.
        """
        self.full_name = full_name
        self.commit = commit
        self.reason = reason
        super().__init__(f"Failed to resolve {full_name}@{commit}: {reason}")


class ProvisionError(RelayServiceError):
    """Raised when a template cannot be built or an environment started.

    HTTP Status: 500 Internal Server Error
    """

    stage = "provision"


class TunnelError(RelayServiceError):
    """Raised when an environment never becomes reachable from the host.

    HTTP Status: 500 Internal Server Error
    """

    stage = "tunnel"


class RelayError(RelayServiceError):
    """Raised when forwarding to the upstream environment fails.

    HTTP Status: 502 Bad Gateway (504 Gateway Timeout for timeouts)
    """

    stage = "forward"

    def __init__(self, message: str, status_code: int = 502):
        """Initialize RelayError.

        Args:
            message: Error message describing the transport failure.
            status_code: HTTP status returned to the caller.
        """
        self.status_code = status_code
        super().__init__(message)
