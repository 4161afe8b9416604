"""HR payroll and leave ledger service."""

__version__ = "0.1.0"
