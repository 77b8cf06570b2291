"""autoledger - personal finance ledger engine."""

__version__ = "1.0.0"
