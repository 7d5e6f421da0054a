from .admin_service import AdminService
from .cart_service import CartService
from .catalog_service import CatalogService
from .change_feed import ChangeFeed, publish_change
from .checkout_service import CheckoutService
from .media_service import MediaService
from .notification_service import NotificationScheduler, NotificationService
from .order_service import OrderService
from .payment_service import LuxePayGateway, RazorpayClient, get_luxepay_gateway
from .pricing_service import PricingService
from .profile_service import ProfileService
from .recommendation_service import RecommendationService
from .transaction_service import TransactionService

__all__ = [
    "AdminService",
    "CartService",
    "CatalogService",
    "ChangeFeed",
    "publish_change",
    "CheckoutService",
    "MediaService",
    "NotificationScheduler",
    "NotificationService",
    "OrderService",
    "LuxePayGateway",
    "RazorpayClient",
    "get_luxepay_gateway",
    "PricingService",
    "ProfileService",
    "RecommendationService",
    "TransactionService",
]
