"""Build diagnostics and the error taxonomy of the document builder.

Components raise a ``BuildError`` subclass where a fact cannot be turned into
valid OpenAPI. The pipeline catches them at the seams and records them in a
``DiagnosticBag`` so one build run reports every structural problem at once.
"""

import logging
from enum import Enum

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Diagnostic(BaseModel):
    """A structured build message tied to the scope that caused it."""

    severity: Severity
    code: str
    message: str
    scope: str | None = None

    def __str__(self) -> str:
        where = f" [{self.scope}]" if self.scope else ""
        return f"{self.severity.value} {self.code}{where}: {self.message}"


class BuildError(Exception):
    """Base class for input errors that are fatal to the current build."""

    def __init__(self, message: str, scope: str | None = None):
        super().__init__(message)
        self.message = message
        self.scope = scope
        self.located = False  # message already prefixed with Owner.member

    @property
    def code(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return self.message

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(severity=Severity.ERROR, code=self.code, message=self.message, scope=self.scope)


class InvalidFactError(BuildError):
    pass


class DuplicateFactError(BuildError):
    pass


class UnsupportedTypeError(BuildError):
    pass


class ConstraintRangeError(BuildError):
    pass


class MissingPathParameterError(BuildError):
    pass


class UnknownPathParameterError(BuildError):
    pass


class DuplicateRequestBodyError(BuildError):
    pass


class DuplicateOperationIdError(BuildError):
    pass


class DuplicateRouteError(BuildError):
    pass


class MissingApiInfoError(BuildError):
    pass


class DuplicateApiInfoError(BuildError):
    pass


class DuplicateServerError(BuildError):
    pass


class DuplicateTagError(BuildError):
    pass


class DuplicateSecuritySchemeError(BuildError):
    pass


class UndefinedSecuritySchemeError(BuildError):
    pass


class DanglingReferenceError(BuildError):
    pass


class BuildFailedError(Exception):
    """Raised when output is requested from a build with fatal diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]):
        self.diagnostics = diagnostics
        super().__init__(f"build failed with {len(diagnostics)} error(s)")


class DiagnosticBag:
    """Ordered collection of diagnostics for one build."""

    def __init__(self):
        self._items: list[Diagnostic] = []

    def report(self, error: BuildError) -> Diagnostic:
        diagnostic = error.to_diagnostic()
        logger.debug("%s", diagnostic)
        self._items.append(diagnostic)
        return diagnostic

    def warn(self, code: str, message: str, scope: str | None = None) -> Diagnostic:
        diagnostic = Diagnostic(severity=Severity.WARNING, code=code, message=message, scope=scope)
        logger.debug("%s", diagnostic)
        self._items.append(diagnostic)
        return diagnostic

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity is Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return any(d.severity is Severity.ERROR for d in self._items)

    def codes(self) -> list[str]:
        return [d.code for d in self._items]

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
