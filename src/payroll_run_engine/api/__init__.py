"""HTTP API for payroll runs."""

from payroll_run_engine.api.app import create_app

__all__ = ["create_app"]
