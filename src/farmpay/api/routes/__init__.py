"""API routes."""

from farmpay.api.routes.health import router as health_router
from farmpay.api.routes.invoices import router as invoices_router
from farmpay.api.routes.payroll import router as payroll_router
from farmpay.api.routes.transactions import router as transactions_router
from farmpay.api.routes.wallets import router as wallets_router
from farmpay.api.routes.webhooks import router as webhooks_router

__all__ = [
    "health_router",
    "invoices_router",
    "payroll_router",
    "transactions_router",
    "wallets_router",
    "webhooks_router",
]
