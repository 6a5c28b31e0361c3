"""Exception taxonomy shared by every harness component."""

from playwright.async_api import TimeoutError as PlaywrightTimeoutError


class HarnessError(Exception):
    """Base class for all harness failures."""


class NotFound(HarnessError):
    """No candidate query matched an element on the surface."""

    def __init__(self, what: str, tried: int = 0):
        self.what = what
        self.tried = tried
        super().__init__(f"{what} not found ({tried} candidate queries tried)")


class GuardViolation(HarnessError):
    """An exact-match safety check failed before or after a destructive action."""

    def __init__(self, message: str, count: int | None = None):
        self.count = count
        super().__init__(message)


class FixtureLeak(GuardViolation):
    """A confirmed fixture is still present after its deletion."""


class HarnessTimeout(HarnessError):
    """A bounded wait ran out."""


class AuthenticationTimeout(HarnessTimeout):
    """External authentication did not complete within the login wait."""


class AuthenticationRequired(HarnessError):
    """Unauthenticated in a mode where nobody can authenticate."""


class ValidationRejected(HarnessError):
    """The surface rejected submitted input, even after the corrective retry."""


class ScenarioAborted(HarnessError):
    """A strict or required step failed; the rest of the scenario is skipped."""

    def __init__(self, step):
        self.step = step
        super().__init__(f"aborted at {step.name}: {step.error or step.note or 'failed'}")


class ConfigError(HarnessError):
    """Invalid flag map."""


# Always fatal to the run, whatever the step strictness.
FATAL_ERRORS = (GuardViolation, AuthenticationTimeout, AuthenticationRequired)


def is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, (HarnessTimeout, TimeoutError, PlaywrightTimeoutError))
