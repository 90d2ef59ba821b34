from enum import Enum


class FailureKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


class MessageServiceError(Exception):
    kind: FailureKind = FailureKind.UPSTREAM_UNAVAILABLE


class ValidationError(MessageServiceError):
    kind = FailureKind.VALIDATION


class NotFoundError(MessageServiceError):
    kind = FailureKind.NOT_FOUND


class UpstreamUnavailableError(MessageServiceError):
    kind = FailureKind.UPSTREAM_UNAVAILABLE
