"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.config import get_settings
from payroll_run_engine.database import init_db
from payroll_run_engine.providers.bracket_tables import SqlBracketTableSource
from payroll_run_engine.services.pay_run_service import PayrollRunService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, session_factory = init_db()
    async with session_factory() as session:
        yield session


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract tenant ID from header."""
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Tenant-ID format",
        )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
TenantId = Annotated[UUID, Depends(get_tenant_id)]


async def get_payroll_run_service(db: DbSession) -> PayrollRunService:
    """Build a run service wired to the SQL adapters."""
    settings = get_settings()
    return PayrollRunService(
        db,
        brackets=SqlBracketTableSource(db, settings.default_country_code),
    )


RunService = Annotated[PayrollRunService, Depends(get_payroll_run_service)]
