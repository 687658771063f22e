"""Write guard for approved and paid payroll runs.

A ``before_flush`` hook rejects any ORM change to a frozen run or to its
line items and errors. The only change allowed on an approved run is the
transition to ``paid``.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session

from payroll_run_engine.errors import ImmutableRunError
from payroll_run_engine.models import PayrollLineItem, PayrollRun, PayrollRunError
from payroll_run_engine.services.state_machine import PayrollRunStateMachine, PayrollRunStatus

logger = logging.getLogger(__name__)

# Columns that may change when an approved run is marked paid
PAYMENT_COLUMNS = frozenset({"status", "paid_at"})

_installed = False


def install_immutability_guard() -> None:
    """Register the flush hook on all ORM sessions (idempotent)."""
    global _installed
    if _installed:
        return
    event.listen(Session, "before_flush", _before_flush)
    _installed = True


def uninstall_immutability_guard() -> None:
    global _installed
    if _installed:
        event.remove(Session, "before_flush", _before_flush)
        _installed = False


def _persisted_status(run: PayrollRun) -> str:
    """Status as last loaded from the database."""
    history = inspect(run).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    return run.status


def _changed_columns(obj: Any) -> set[str]:
    state = inspect(obj)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


def check_run_change(run: PayrollRun, deleting: bool = False) -> None:
    """Raise ImmutableRunError if this pending change to a run is not allowed."""
    status = _persisted_status(run)
    if not PayrollRunStateMachine.is_immutable(status):
        return
    if deleting:
        raise ImmutableRunError(run.run_id, status)

    changed = _changed_columns(run) - {"line_items", "errors"}
    if not changed:
        return
    if (
        status == PayrollRunStatus.APPROVED
        and run.status == PayrollRunStatus.PAID
        and changed <= PAYMENT_COLUMNS
    ):
        return
    raise ImmutableRunError(run.run_id, status)


def _run_status(session: Session, run_id: UUID) -> str | None:
    for obj in session.identity_map.values():
        if isinstance(obj, PayrollRun) and obj.run_id == run_id:
            return _persisted_status(obj)
    with session.no_autoflush:
        return session.execute(
            select(PayrollRun.status).where(PayrollRun.run_id == run_id)
        ).scalar_one_or_none()


def _before_flush(session: Session, flush_context: Any, instances: Any) -> None:
    for obj in session.deleted:
        if isinstance(obj, PayrollRun):
            check_run_change(obj, deleting=True)

    for obj in session.dirty:
        if isinstance(obj, PayrollRun) and session.is_modified(obj, include_collections=False):
            check_run_change(obj)

    children = [
        obj
        for obj in (*session.new, *session.dirty, *session.deleted)
        if isinstance(obj, (PayrollLineItem, PayrollRunError))
    ]
    for obj in children:
        if obj in session.dirty and not session.is_modified(obj, include_collections=False):
            continue
        status = _run_status(session, obj.run_id)
        if status is not None and PayrollRunStateMachine.is_immutable(status):
            what = "line items" if isinstance(obj, PayrollLineItem) else "run errors"
            logger.warning("Blocked write to %s of frozen run %s", what, obj.run_id)
            raise ImmutableRunError(obj.run_id, status, what)
