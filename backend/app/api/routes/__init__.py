# API Routes Module
from app.api.routes import (
    admin,
    webhooks,
)

__all__ = [
    "admin",
    "webhooks",
]
