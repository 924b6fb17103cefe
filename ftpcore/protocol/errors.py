from typing import Optional


class FTPError(Exception):
    """Base class for failures that are answered with a reply on the control channel"""

    code = 500

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def reply_text(self) -> str:
        return f"{self.code} {self.message}"


class CommandSyntaxError(FTPError):
    code = 500


class LineTooLong(CommandSyntaxError):
    pass


class BadParameters(FTPError):
    code = 501


class BadSequence(FTPError):
    code = 503


class ParameterNotImplemented(FTPError):
    code = 504


class AuthFailure(FTPError):
    code = 530


class PathTooLong(FTPError):
    code = 500


class NotFound(FTPError):
    code = 550


class AlreadyExists(FTPError):
    code = 521


class IOFailure(FTPError):
    code = 450


class NoDataConnection(FTPError):
    code = 425
