from .user import User
from .customer import Customer
from .product import Product, BulkDiscount
from .reservation import Reservation, ReservationStatus
from .order import Order, OrderItem, OrderStatusHistory, OrderStatus, DeliveryMethod
from .refund import RefundRequest, RefundStatus
from .shipping import DeliveryZone
from .discount_code import DiscountCode, DiscountCodeUsage, DiscountTarget, DiscountType
from .stock_subscription import StockSubscription
