from .audit import AuditLog
from .cart import CartItem
from .course import Course
from .enrollment import Enrollment
from .error_log import ErrorLog
from .order import CourseOrder, OrderStatus
from .platform_setting import COMMISSION_PERCENTAGE_KEY, PlatformSetting

__all__ = [
    "AuditLog",
    "CartItem",
    "COMMISSION_PERCENTAGE_KEY",
    "Course",
    "CourseOrder",
    "Enrollment",
    "ErrorLog",
    "OrderStatus",
    "PlatformSetting",
]
