"""Last-import timestamps, read by external scheduling logic."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from t3monitor.db.models import ImportTime, utc_now

CLIENT_IMPORT = "client"


async def set_import_time(db: AsyncSession, name: str, when: datetime | None = None) -> datetime:
    when = when or utc_now()
    row = await db.get(ImportTime, name)
    if row is None:
        db.add(ImportTime(name=name, imported_at=when))
    else:
        row.imported_at = when
    await db.flush()
    return when


async def get_import_time(db: AsyncSession, name: str) -> datetime | None:
    row = await db.get(ImportTime, name)
    return row.imported_at if row is not None else None
