"""
Import Errors
Fatal conditions that abort an import before any row is written
"""


class ImportFailure(Exception):
    """Base class for import-level failures (row failures never raise)."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingImportParameterError(ImportFailure):
    pass


class UnsupportedMarketplaceError(ImportFailure):
    pass


class InvalidImportTypeError(ImportFailure):
    pass


class EmptyImportFileError(ImportFailure):
    pass


class StorageUnavailableError(ImportFailure):
    status_code = 503
