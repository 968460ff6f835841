"""Exception taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations


class AdvisorError(Exception):
    """Base error; ``status_code`` is what the HTTP layer answers with."""

    status_code = 500


class NotConnectedError(AdvisorError):
    """No database gateway is configured."""

    status_code = 503


class NotFoundError(AdvisorError):
    status_code = 404


class UnknownProfileError(AdvisorError):
    status_code = 400


class ConflictError(AdvisorError):
    """An exclusive session is already active."""

    status_code = 409


class WorkloadConflictError(ConflictError):
    pass


class SamplingConflictError(ConflictError):
    pass


class SamplingNotActiveError(AdvisorError):
    status_code = 409


class CommandError(AdvisorError):
    """A database command failed."""

    status_code = 502


class SamplingCommandError(CommandError):
    pass
