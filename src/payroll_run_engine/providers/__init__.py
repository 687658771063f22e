"""Adapters for the data the engine consumes but does not own."""

from payroll_run_engine.providers.bracket_tables import (
    BracketTableSource,
    SqlBracketTableSource,
    StaticBracketTableSource,
)
from payroll_run_engine.providers.roster import RosterProvider, SqlRosterProvider
from payroll_run_engine.providers.time_tracking import SqlTimeTrackingSource, TimeTrackingSource

__all__ = [
    "BracketTableSource",
    "RosterProvider",
    "SqlBracketTableSource",
    "SqlRosterProvider",
    "SqlTimeTrackingSource",
    "StaticBracketTableSource",
    "TimeTrackingSource",
]
