from .admin import admin_bp
from .auth import auth_bp
from .cart import cart_bp
from .catalog import catalog_bp
from .checkout import checkout_bp
from .media import media_bp
from .orders import orders_bp

ALL_BLUEPRINTS = (auth_bp, catalog_bp, cart_bp, checkout_bp, orders_bp, admin_bp, media_bp)

__all__ = [
    "ALL_BLUEPRINTS",
    "admin_bp",
    "auth_bp",
    "cart_bp",
    "catalog_bp",
    "checkout_bp",
    "media_bp",
    "orders_bp",
]
