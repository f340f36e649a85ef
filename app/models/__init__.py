from app.models.user import User
from app.models.fencing_class import Club, FencingClass
from app.models.reservation import ClassReservation
from app.models.payment_log import PaymentLog
from app.models.notification import Notification
from app.models.push import PushDevice, PushLog
from app.models.platform_setting import PlatformSetting

__all__ = [
    "User", "Club", "FencingClass", "ClassReservation", "PaymentLog",
    "Notification", "PushDevice", "PushLog", "PlatformSetting",
]
