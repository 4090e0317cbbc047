"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from farmpay.payments.facade import FarmPay


def get_farmpay(request: Request) -> FarmPay:
    """The payment core built at startup."""
    return request.app.state.farmpay


# Type alias for cleaner dependency injection
FarmPayDep = Annotated[FarmPay, Depends(get_farmpay)]


def get_db_engine(request: Request) -> AsyncEngine | None:
    """Database engine behind the store, or None for an in-memory store."""
    return getattr(request.app.state, "db_engine", None)


DbEngine = Annotated[AsyncEngine | None, Depends(get_db_engine)]
