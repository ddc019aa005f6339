"""Routers package."""

from . import (
    health,
    catalog,
    brain,
    account_context,
)
