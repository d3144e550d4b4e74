"""Backend user reconciler: upserts reported backend users and relinks them.

A reported user is matched by user name against a candidate set. With the
default "client" scope the candidates are the users currently linked to
this client, so a name known only from another client gets a row of its
own. The "global" scope matches against every stored user with that name
and lets the last importing client overwrite the shared profile.
"""

from collections.abc import Sequence

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from t3monitor.config import BackendUserMatchScope, settings
from t3monitor.db.models import BackendUser, ClientBackendUser
from t3monitor.logging_config import get_logger
from t3monitor.services.errors import ReconciliationError
from t3monitor.services.report_decoder import BackendUserInfo

logger = get_logger(__name__)


async def _load_candidates(
    db: AsyncSession,
    client_id: int,
    users: Sequence[BackendUserInfo],
    scope: BackendUserMatchScope,
) -> dict[str, BackendUser]:
    if scope == BackendUserMatchScope.GLOBAL:
        names = {user.user_name for user in users}
        if not names:
            return {}
        stmt = select(BackendUser).where(BackendUser.user_name.in_(names))
    else:
        stmt = (
            select(BackendUser)
            .join(ClientBackendUser, ClientBackendUser.backend_user_id == BackendUser.id)
            .where(ClientBackendUser.client_id == client_id)
        )

    result = await db.execute(stmt.order_by(BackendUser.id))
    candidates: dict[str, BackendUser] = {}
    for row in result.scalars().all():
        candidates.setdefault(row.user_name, row)
    return candidates


def _apply_profile(row: BackendUser, user: BackendUserInfo) -> None:
    row.real_name = user.real_name
    row.email_address = user.email_address
    row.description = user.description
    row.last_login = user.last_login


async def reconcile(
    db: AsyncSession,
    client_id: int,
    users: Sequence[BackendUserInfo],
    scope: BackendUserMatchScope | None = None,
) -> int:
    """Upsert the reported users and replace the client's links.

    Stages changes on `db` without committing. Returns the number of
    reported users.
    """
    scope = scope or settings.importer.backend_user_match_scope
    try:
        candidates = await _load_candidates(db, client_id, users, scope)

        linked: list[int] = []
        created = 0
        for user in users:
            row = candidates.get(user.user_name)
            if row is None:
                row = BackendUser(user_name=user.user_name)
                _apply_profile(row, user)
                db.add(row)
                await db.flush()
                candidates[user.user_name] = row
                created += 1
            else:
                _apply_profile(row, user)

            if row.id not in linked:
                linked.append(row.id)

        await db.flush()
        await db.execute(
            delete(ClientBackendUser).where(ClientBackendUser.client_id == client_id)
        )
        if linked:
            await db.execute(
                insert(ClientBackendUser),
                [{"client_id": client_id, "backend_user_id": user_id} for user_id in linked],
            )
    except SQLAlchemyError as e:
        raise ReconciliationError(f"Could not store backend users: {e}") from e

    logger.debug(
        "Backend users reconciled",
        client_id=client_id,
        reported=len(users),
        created=created,
        scope=str(scope),
    )
    return len(users)
