from app.models.user import User, UserRole
from app.models.tenant import SubscriptionStatus, Tenant
from app.models.order import Order, OrderStatus, OrderType, PaymentStatus
from app.models.login_attempt import LoginAttempt
