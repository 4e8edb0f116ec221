"""
Error taxonomy shared by every service.

The HTTP layer maps each class to a status code; services raise them and
never deal with HTTP concerns.
"""


class DevStudyError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DevStudyError):
    """Empty or too-short input, rejected before any store call."""

    status_code = 400


class NotFoundError(DevStudyError):
    status_code = 404


class AlreadyMemberError(DevStudyError):
    status_code = 409


class AuthError(DevStudyError):
    """Identity failure, already translated to user-presentable text."""

    status_code = 401


class ForbiddenError(DevStudyError):
    status_code = 403


class TransientStoreError(DevStudyError):
    """Network or store failure; the caller may retry."""

    status_code = 503
