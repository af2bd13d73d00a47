"""Shared SQLAlchemy models registry for the workspace database.

Includes the ledger tables owned by the host application and the
``ft_financial_cube`` table owned by ``trends_cube``.
"""

from .finance import Base, FtAccount, FtCategory, FtCubeRow, FtTransaction

__all__ = [
    "Base",
    "FtAccount",
    "FtCategory",
    "FtCubeRow",
    "FtTransaction",
]
