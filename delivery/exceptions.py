from rest_framework import status


class DeliveryError(Exception):
    """Base error of the delivery lifecycle.

    ``code`` is the stable machine-readable kind returned to clients, the
    message is meant for humans.
    """

    code = "delivery_error"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False
    default_message = "Delivery operation failed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self):
        return {"detail": self.message, "code": self.code}


class NotFound(DeliveryError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Forbidden(DeliveryError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not allowed to perform this action"


class InvalidState(DeliveryError):
    code = "invalid_state"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Order is not in a state that allows this action"


class IllegalTransition(DeliveryError):
    code = "illegal_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, from_status, to_status, message=None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message or f"Cannot change status from {from_status} to {to_status}")

    def as_dict(self):
        data = super().as_dict()
        data.update({"from_status": self.from_status, "to_status": self.to_status})
        return data


class InactivePerson(DeliveryError):
    code = "inactive_person"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Delivery person is not active"


class DuplicateRating(DeliveryError):
    code = "duplicate_rating"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Delivery for this order has already been rated"


class ConfirmationRequired(DeliveryError):
    code = "confirmation_required"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = (
        "This action requires confirmation. Send confirm_delete=true to proceed."
    )


class Unavailable(DeliveryError):
    code = "unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    retry_after = 1
    default_message = "Order store is temporarily unavailable, please retry"
