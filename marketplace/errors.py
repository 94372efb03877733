from typing import Any


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str | None = None, *, detail: Any = None) -> None:
        self.message = message or self.__class__.__name__
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.detail is not None:
            body["detail"] = self.detail
        return body


class BadRequest(StorefrontError):
    status_code = 400


class Unauthorized(StorefrontError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class Forbidden(StorefrontError):
    status_code = 403

    def __init__(self, message: str = "Forbidden", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NotFound(StorefrontError):
    status_code = 404

    def __init__(self, message: str = "Not found", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class Conflict(StorefrontError):
    status_code = 409


class ConfigError(StorefrontError):
    status_code = 500


class InvalidSignature(StorefrontError):
    status_code = 401

    def __init__(self, message: str = "Invalid signature", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class PaymentGatewayError(StorefrontError):
    status_code = 502
