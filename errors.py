"""Exceptions raised by the symptom checker's collaborators."""


class SymptomCheckerError(Exception):
    """Base class for every failure the backend reports to a caller."""


class DatasetLoadError(SymptomCheckerError):
    """The condition dataset could not be fetched or parsed."""


class MetadataLookupError(SymptomCheckerError):
    """The local metadata table could not be queried or written."""


class ExplanationError(SymptomCheckerError):
    """The language-model explanation call failed or returned garbage."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw
