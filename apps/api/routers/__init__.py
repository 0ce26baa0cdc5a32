"""Routers package."""

from . import (
    health,
    companies,
    catalog,
    billing,
    webhooks,
    phones,
)
