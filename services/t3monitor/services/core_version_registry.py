"""Core version registry: maps TYPO3 core version strings to core_versions ids.

The cache is seeded once per import pass and lives as long as the
ClientImport that owns it. The unique constraint on core_versions.version
is what prevents duplicates; the cache only saves round trips.

Ids inserted inside a client's transaction are staged in a dict owned by
that client unit and only become visible to other clients after
confirm(), so a rolled-back client never leaves a dangling id behind.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from t3monitor.db.models import CoreVersion
from t3monitor.logging_config import get_logger
from t3monitor.services.errors import ReconciliationError
from t3monitor.services.versions import version_to_integer

logger = get_logger(__name__)


class CoreVersionRegistry:
    def __init__(self, versions: dict[str, int] | None = None) -> None:
        self._cache: dict[str, int] = dict(versions or {})

    @classmethod
    async def load(cls, db: AsyncSession) -> "CoreVersionRegistry":
        """Build a registry seeded with every stored core version."""
        result = await db.execute(
            select(CoreVersion.version, CoreVersion.id).order_by(CoreVersion.version)
        )
        registry = cls(dict(result.all()))
        logger.debug("Core version cache loaded", versions=len(registry))
        return registry

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, version: str) -> bool:
        return version in self._cache

    async def resolve(
        self,
        db: AsyncSession,
        version: str,
        staged: dict[str, int] | None = None,
    ) -> int:
        """Return the id of `version`, inserting the row on first sight.

        New ids go into `staged` when given (confirm it after commit),
        straight into the cache otherwise.
        """
        if version in self._cache:
            return self._cache[version]
        if staged is not None and version in staged:
            return staged[version]

        try:
            core_id = await self._lookup_or_insert(db, version)
        except SQLAlchemyError as e:
            raise ReconciliationError(f"Could not store core version {version}: {e}") from e

        (staged if staged is not None else self._cache)[version] = core_id
        return core_id

    def confirm(self, staged: dict[str, int]) -> None:
        """Promote ids staged by a committed client unit into the cache."""
        self._cache.update(staged)
        staged.clear()

    async def _lookup_or_insert(self, db: AsyncSession, version: str) -> int:
        # Another importer (or an earlier client of this pass that committed
        # after the cache was seeded) may already have inserted it.
        existing = await db.scalar(
            select(CoreVersion.id).where(CoreVersion.version == version).limit(1)
        )
        if existing is not None:
            return existing

        try:
            async with db.begin_nested():
                core = CoreVersion(
                    version=version,
                    version_integer=version_to_integer(version),
                    is_official=False,
                    # Unknown releases count as insecure until release data says otherwise
                    insecure=True,
                )
                db.add(core)
                await db.flush()
        except IntegrityError:
            existing = await db.scalar(
                select(CoreVersion.id).where(CoreVersion.version == version).limit(1)
            )
            if existing is None:
                raise
            logger.debug("Core version inserted concurrently", version=version)
            return existing

        logger.info("New core version registered", version=version, core_version_id=core.id)
        return core.id
