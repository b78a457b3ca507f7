RETRYABLE_STATUSES = frozenset({421, 450, 503, 504})


class DeliveryError(Exception):
    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES
