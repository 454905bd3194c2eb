class PosError(Exception):
    """Base POS error. `status` is the HTTP code the server answers with."""
    status = 500


class InvalidInput(PosError):
    status = 400


class InsufficientStock(PosError):
    status = 400

    def __init__(self, message: str, shortages=None):
        super().__init__(message)
        self.shortages = shortages or []


class NotFound(PosError):
    status = 404


class UnknownProduct(NotFound):
    # Reported as a bad sale request, not a missing route resource.
    status = 400


class StorageFailure(PosError):
    status = 503


class DeviceUnavailable(PosError):
    status = 503
