"""Database configuration and the administrative connection gateway"""

from .config import DatabaseConfig
from .gateway import DatabaseGateway, TransactionHandle

__all__ = ['DatabaseConfig', 'DatabaseGateway', 'TransactionHandle']
