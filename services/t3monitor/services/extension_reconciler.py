"""Extension reconciler: dedupes reported extensions and relinks them to a client.

Extensions are shared catalog rows keyed by (name, version). The
client_extensions association carries what differs per client: the title,
state and loaded flag from this client's report. The association set is
replaced wholesale on every import.
"""

from sqlalchemy import and_, delete, insert, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from t3monitor.db.models import ClientExtension, Extension, ExtensionState
from t3monitor.logging_config import get_logger
from t3monitor.services.errors import ReconciliationError
from t3monitor.services.report_decoder import ExtensionInfo
from t3monitor.services.versions import version_to_integer

logger = get_logger(__name__)


async def _find_existing(
    db: AsyncSession, pairs: list[tuple[str, str]]
) -> dict[tuple[str, str], int]:
    """Map (name, version) -> id for the pairs already stored.

    One query for all pairs. Should the store ever hold two rows for a pair,
    the lowest id wins.
    """
    if not pairs:
        return {}

    result = await db.execute(
        select(Extension.id, Extension.name, Extension.version)
        .where(
            or_(*(and_(Extension.name == name, Extension.version == version) for name, version in pairs))
        )
        .order_by(Extension.id)
    )
    found: dict[tuple[str, str], int] = {}
    for ext_id, name, version in result.all():
        found.setdefault((name, version), ext_id)
    return found


async def _insert_extension(db: AsyncSession, name: str, info: ExtensionInfo) -> int:
    """Insert a catalog row, or return the row a concurrent import just created."""
    try:
        async with db.begin_nested():
            ext = Extension(
                name=name,
                version=info.version,
                version_integer=version_to_integer(info.version),
                title=info.title,
                description=info.description,
                state=int(ExtensionState.from_label(info.state)),
                is_official=False,
            )
            db.add(ext)
            await db.flush()
    except IntegrityError:
        existing = await db.scalar(
            select(Extension.id)
            .where(Extension.name == name, Extension.version == info.version)
            .order_by(Extension.id)
            .limit(1)
        )
        if existing is None:
            raise
        return existing

    logger.debug("New extension registered", name=name, version=info.version, extension_id=ext.id)
    return ext.id


async def reconcile(
    db: AsyncSession, client_id: int, extensions: dict[str, ExtensionInfo]
) -> int:
    """Upsert the reported extensions and replace the client's links.

    Stages changes on `db` without committing. Returns the number of
    reported extensions.
    """
    try:
        existing = await _find_existing(
            db, [(name, info.version) for name, info in extensions.items()]
        )

        # Keyed by extension id: a repeated pair keeps its last occurrence
        links: dict[int, dict] = {}
        created = 0
        for name, info in extensions.items():
            ext_id = existing.get((name, info.version))
            if ext_id is None:
                ext_id = await _insert_extension(db, name, info)
                existing[(name, info.version)] = ext_id
                created += 1

            links[ext_id] = {
                "client_id": client_id,
                "extension_id": ext_id,
                "title": info.title,
                "state": int(ExtensionState.from_label(info.state)),
                "is_loaded": info.is_loaded,
            }

        await db.execute(delete(ClientExtension).where(ClientExtension.client_id == client_id))
        if links:
            await db.execute(insert(ClientExtension), list(links.values()))
    except SQLAlchemyError as e:
        raise ReconciliationError(f"Could not store extensions: {e}") from e

    logger.debug(
        "Extensions reconciled",
        client_id=client_id,
        reported=len(extensions),
        created=created,
    )
    return len(extensions)
