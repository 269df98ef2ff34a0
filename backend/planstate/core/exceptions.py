"""Shared exceptions module."""

from typing import Optional

from pydantic import ValidationError


class PlanstateException(Exception):
    """Base exception for planstate services."""

    pass


class NotFoundException(PlanstateException):
    """Exception raised when an object is not found."""

    def __init__(self, message: Optional[str] = "Object not found"):
        """Create a new NotFoundException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class ConfigurationError(PlanstateException):
    """Exception raised when required configuration is missing or inconsistent.

    Raised verbatim to the caller. Money-relevant configuration is never defaulted.
    """

    def __init__(self, message: Optional[str] = "Invalid configuration"):
        """Create a new ConfigurationError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class UnknownPriceError(ConfigurationError):
    """Exception raised when a price ID is not part of the configured catalog."""

    def __init__(self, price_id: str):
        """Create a new UnknownPriceError instance.

        Args:
        ----
            price_id (str): The unrecognized price ID.

        """
        self.price_id = price_id
        super().__init__(f"Unknown price ID: {price_id}")


class PreconditionFailedError(PlanstateException):
    """Exception raised when an operation's preconditions do not hold."""

    def __init__(self, message: Optional[str] = "Precondition failed"):
        """Create a new PreconditionFailedError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class NoActiveSubscriptionError(PreconditionFailedError):
    """Exception raised when a customer has no active or trialing subscription."""

    def __init__(self, message: Optional[str] = "No active subscription found"):
        """Create a new NoActiveSubscriptionError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class WebhookSignatureError(PlanstateException):
    """Exception raised when a webhook payload fails signature verification."""

    def __init__(self, message: Optional[str] = "Invalid webhook signature"):
        """Create a new WebhookSignatureError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class ExternalServiceError(Exception):
    """Exception raised when an external service fails."""

    def __init__(self, service_name: str, message: Optional[str] = "External service failed"):
        """Create a new ExternalServiceError instance.

        Args:
        ----
            service_name (str): The name of the external service.
            message (str, optional): The error message. Has default message.

        """
        self.service_name = service_name
        self.message = message
        super().__init__(f"{service_name}: {message}")


class PaymentFailedError(ExternalServiceError):
    """Exception raised when the processor could not collect an immediate payment."""

    def __init__(self, message: Optional[str] = "Payment could not be collected"):
        """Create a new PaymentFailedError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(service_name="Stripe", message=message)


class InvalidStateError(Exception):
    """Exception raised when an object is in an invalid state.

    Used when multiple services are involved and the state of one service is invalid,
    in relation to the other services.
    """

    def __init__(self, message: Optional[str] = "Object is in an invalid state"):
        """Create a new InvalidStateError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


def unpack_validation_error(exc: ValidationError) -> dict:
    """Unpack a Pydantic validation error into a dictionary.

    Args:
    ----
        exc (ValidationError): The Pydantic validation error.

    Returns:
    -------
        dict: The dictionary representation of the validation error.

    """
    error_messages = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        message = error["msg"]
        error_messages.append({field: message})

    return {"errors": error_messages}
