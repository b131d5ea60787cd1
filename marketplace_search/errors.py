# marketplace_search/errors.py


class SearchInfrastructureError(Exception):
    """Storage was unreachable for every step of a search; safe to retry."""

    retryable = True

    def __init__(self, message, failures=None):
        super().__init__(message)
        self.failures = list(failures or [])


class StorageTimeoutError(SearchInfrastructureError):
    pass
