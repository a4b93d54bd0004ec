from sqlalchemy.ext.asyncio import AsyncSession

from models.ai_request_logs import AIRequestLog


class AIRequestLogCRUD:
    """Write-only access to model request provenance."""

    async def create(self, db: AsyncSession, **fields: object) -> AIRequestLog:
        """Insert a provenance record and commit."""
        record = AIRequestLog(**fields)
        try:
            db.add(record)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return record


ai_request_log_crud = AIRequestLogCRUD()
