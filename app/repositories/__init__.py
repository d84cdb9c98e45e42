from app.repositories.audit_logs import InMemoryAuditLogsRepository, PostgresAuditLogsRepository
from app.repositories.extraction_runs import InMemoryExtractionRunsRepository, PostgresExtractionRunsRepository
from app.repositories.review_rules import InMemoryReviewRulesRepository, PostgresReviewRulesRepository

__all__ = [
    "InMemoryAuditLogsRepository",
    "PostgresAuditLogsRepository",
    "InMemoryExtractionRunsRepository",
    "PostgresExtractionRunsRepository",
    "InMemoryReviewRulesRepository",
    "PostgresReviewRulesRepository",
]
