from app.schemas.payment import (
    CheckoutPayload, PrepareResponse, ConfirmRequest, ConfirmResponse,
    FailRequest, OkResponse, WebhookResponse,
)
from app.schemas.notification import NotificationResponse, MarkAllReadResponse
from app.schemas.push import DeviceRegister, DeviceUnregister, DeviceResponse, DeactivatedResponse
from app.schemas.reservation import ReservationStatusUpdate, ReservationResponse

__all__ = [
    "CheckoutPayload", "PrepareResponse", "ConfirmRequest", "ConfirmResponse",
    "FailRequest", "OkResponse", "WebhookResponse",
    "NotificationResponse", "MarkAllReadResponse",
    "DeviceRegister", "DeviceUnregister", "DeviceResponse", "DeactivatedResponse",
    "ReservationStatusUpdate", "ReservationResponse",
]
