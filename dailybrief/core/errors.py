"""Domain exceptions for the briefing delivery engine.

Configuration problems on a single schedule are not exceptions; they surface
as a ``Decision`` and the record is skipped. Everything here is raised by a
collaborator and either caught per user by the batch scheduler or, for
``ScheduleStoreError``, propagated to whoever started the run.
"""


class DailyBriefError(Exception):
    """Base class for dailybrief errors."""


class ScheduleStoreError(DailyBriefError):
    """The schedule store could not be read or written."""


class InvalidScheduleSettings(DailyBriefError):
    """Submitted delivery settings failed validation."""


class BriefingGenerationError(DailyBriefError):
    """The briefing assembler failed or produced no content."""


class DeliveryError(DailyBriefError):
    """The delivery channel could not send the briefing.

    ``attempted`` is False only when the provider was never called, so the
    message certainly did not go out.
    """

    def __init__(self, message: str, attempted: bool = True) -> None:
        super().__init__(message)
        self.attempted = attempted
