"""Exception types raised (or recorded) by the association workflow."""

from typing import Sequence


class MicrofluxError(Exception):
    """Base class for microflux errors."""


class DataLoadError(MicrofluxError, ValueError):
    """An input table is missing, unreadable, or lacks the subject-ID column."""


class ModelFitError(MicrofluxError, ArithmeticError):
    """A per-feature regression cannot be fitted (degenerate design)."""

    def __init__(self, feature: str, reason: str):
        super().__init__(f"{feature}: {reason}")
        self.feature = feature
        self.reason = reason


class JoinMismatchError(MicrofluxError):
    """Subjects present in only one of the two tables.

    Never raised by the pipeline: inner-join semantics drop these subjects,
    this object only carries the description that gets logged.
    """

    def __init__(self, only_metadata: Sequence[str], only_abundance: Sequence[str]):
        self.only_metadata = list(only_metadata)
        self.only_abundance = list(only_abundance)
        super().__init__(
            f"{len(self.only_metadata)} subject(s) only in metadata, "
            f"{len(self.only_abundance)} only in abundance"
        )
