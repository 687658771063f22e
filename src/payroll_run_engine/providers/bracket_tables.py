"""Bracket table sources."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.calculators.constants import DEFAULT_BRACKET_TABLES
from payroll_run_engine.calculators.deductions import BracketRegistry
from payroll_run_engine.calculators.types import BracketTableSet, StatutoryBracket
from payroll_run_engine.errors import SystemicCalculationError
from payroll_run_engine.models import StatutoryBracketVersion, Tenant

logger = logging.getLogger(__name__)

WITHHOLDINGS = ("contribution_a", "contribution_b", "income_tax")
# Optional in stored payloads; older versions carry no employer tables
EMPLOYER_CONTRIBUTIONS = ("employer_contribution_a", "employer_contribution_b")


class BracketTableSource(Protocol):
    """Source of the statutory bracket tables."""

    async def load_registry(self, tenant_id: UUID | None = None) -> BracketRegistry:
        ...


class StaticBracketTableSource:
    """Bracket tables held in memory (the built-in defaults unless given)."""

    def __init__(self, table_sets: Iterable[BracketTableSet] = DEFAULT_BRACKET_TABLES):
        self._registry = BracketRegistry(table_sets)

    async def load_registry(self, tenant_id: UUID | None = None) -> BracketRegistry:
        return self._registry


class SqlBracketTableSource:
    """Bracket tables read from ``statutory_bracket_version``.

    Tables are picked by the tenant's country; ``country_code`` is used when
    no tenant is given or the tenant is unknown.
    """

    def __init__(self, session: AsyncSession, country_code: str = "CI"):
        self.session = session
        self.country_code = country_code

    async def load_registry(self, tenant_id: UUID | None = None) -> BracketRegistry:
        country_code = self.country_code
        try:
            if tenant_id is not None:
                tenant = await self.session.get(Tenant, tenant_id)
                if tenant is not None:
                    country_code = tenant.country_code
            result = await self.session.execute(
                select(StatutoryBracketVersion)
                .where(StatutoryBracketVersion.country_code == country_code)
                .order_by(StatutoryBracketVersion.effective_start)
            )
        except SQLAlchemyError as e:
            logger.exception("Failed to load bracket tables for %s", country_code)
            raise SystemicCalculationError(f"Bracket tables unavailable: {e}") from e

        rows = result.scalars().all()
        try:
            return BracketRegistry(table_set_from_row(row) for row in rows)
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise SystemicCalculationError(f"Malformed bracket table payload: {e}") from e


def table_set_from_row(row: StatutoryBracketVersion) -> BracketTableSet:
    """Parse a stored bracket version into a BracketTableSet."""
    payload = row.payload
    return BracketTableSet(
        version=row.version,
        effective_start=row.effective_start,
        effective_end=row.effective_end,
        minimum_wage=Decimal(str(payload["minimum_wage"])),
        contribution_a=_parse_brackets(payload["contribution_a"]),
        contribution_b=_parse_brackets(payload["contribution_b"]),
        income_tax=_parse_brackets(payload["income_tax"]),
        employer_contribution_a=_parse_brackets(payload.get("employer_contribution_a", [])),
        employer_contribution_b=_parse_brackets(payload.get("employer_contribution_b", [])),
    )


def _parse_brackets(items: list[dict[str, Any]]) -> tuple[StatutoryBracket, ...]:
    brackets = []
    for item in items:
        upper = item.get("upper_bound")
        brackets.append(
            StatutoryBracket(
                upper_bound=Decimal(str(upper)) if upper is not None else None,
                rate=Decimal(str(item["rate"])),
                flat_amount=Decimal(str(item.get("flat_amount", "0"))),
            )
        )
    return tuple(brackets)


def table_set_to_payload(table_set: BracketTableSet) -> dict[str, Any]:
    """Serialize a BracketTableSet into the stored JSON payload."""

    def dump(brackets: tuple[StatutoryBracket, ...]) -> list[dict[str, Any]]:
        return [
            {
                "upper_bound": str(b.upper_bound) if b.upper_bound is not None else None,
                "rate": str(b.rate),
                "flat_amount": str(b.flat_amount),
            }
            for b in brackets
        ]

    payload: dict[str, Any] = {"minimum_wage": str(table_set.minimum_wage)}
    for name in WITHHOLDINGS + EMPLOYER_CONTRIBUTIONS:
        payload[name] = dump(getattr(table_set, name))
    return payload


def table_set_to_row(table_set: BracketTableSet, country_code: str = "CI") -> StatutoryBracketVersion:
    return StatutoryBracketVersion(
        country_code=country_code,
        version=table_set.version,
        effective_start=table_set.effective_start,
        effective_end=table_set.effective_end,
        payload=table_set_to_payload(table_set),
    )
