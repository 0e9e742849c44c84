class RemoteAPIError(Exception):
    """The remote messaging platform could not be reached or answered non-2xx."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedPayload(ValueError):
    pass


class SweepInProgress(Exception):
    pass


class TenantNotConfigured(Exception):
    pass
