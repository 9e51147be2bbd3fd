from tabula.repository.audit_repository import RecordAuditRepository
from tabula.repository.record_index_repository import RecordIndexRepository
from tabula.repository.record_repository import RecordRepository
from tabula.repository.repository import Repository
from tabula.repository.search_repository import RecordSearchRepository
from tabula.repository.table_repository import TableRepository

__all__ = [
    "Repository",
    "TableRepository",
    "RecordRepository",
    "RecordIndexRepository",
    "RecordAuditRepository",
    "RecordSearchRepository",
]
