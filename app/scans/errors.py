"""
Scan pipeline error taxonomy.

- fatal, job-level: ScanJobNotFound
- infrastructure: StorageError (always handed to the queue's retry mechanism)
- recoverable, scanner-level: everything under ProviderError
"""


class ScanError(Exception):
    pass


class ScanJobNotFound(ScanError):
    """The delivered job id has no row. Retrying cannot help."""

    def __init__(self, job_id):
        super().__init__(f"scan job {job_id} not found")
        self.job_id = job_id


class StorageError(ScanError):
    pass


class ProviderError(ScanError):
    pass


class SearchProviderError(ProviderError):
    pass


class ImageFetchError(ProviderError):
    pass


class FaceMatcherError(ProviderError):
    pass


class CredentialError(ProviderError):
    """The social account's access credential is missing, expired or revoked."""
