from .interface import BaseInterface, PoolStats, StatementResult

__all__ = ("BaseInterface", "PoolStats", "StatementResult")
