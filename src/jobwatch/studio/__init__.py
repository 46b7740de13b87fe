from .api import create_tracking_router
from .app import create_app

__all__ = ["create_app", "create_tracking_router"]
