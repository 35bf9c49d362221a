class NotificationError(Exception):
    """Base for errors raised by the notification services.

    `message` is the client-facing (French) text; endpoints turn it into the HTTP error detail.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotificationValidationError(NotificationError):
    pass


class NotificationNotFoundError(NotificationError):
    pass


class PushDeliveryError(Exception):
    pass


class PushSubscriptionGoneError(PushDeliveryError):
    """The push service answered 404/410: the subscription no longer exists."""


INTERNAL_ERROR_CONTENT = {"error": {"code": "internal_error", "message": "Une erreur inattendue est survenue."}}
