"""Server-side table service."""

from .table_service import RemoteTableService
from .workbook import Sheet, Workbook

__all__ = ['RemoteTableService', 'Sheet', 'Workbook']
