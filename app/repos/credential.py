from datetime import datetime

import sqlalchemy as sa

from app.models import Credential, StorageProvider
from app.repos.base import BaseRepo


class CredentialRepo(BaseRepo[Credential]):
    """Repository for Credential model operations."""

    def __init__(self) -> None:
        super().__init__(Credential)

    async def get_for_user(self, user_id: int, provider: StorageProvider) -> Credential | None:
        result = await self.execute(
            self.base_stmt.where(Credential.user_id == user_id, Credential.provider == provider)
        )
        return result.one_or_none()

    async def get_due_for_refresh(
        self, refresh_before: datetime, now: datetime, max_failures: int, limit: int
    ) -> list[Credential]:
        """Credentials expiring before ``refresh_before`` that a refresh attempt may pick up now.

        Skips credentials that need a human, have used up their attempts, are leased by another
        worker or are backing off after a failure.
        """
        stmt = (
            self.base_stmt.where(
                Credential.refresh_token.is_not(None),
                Credential.requires_reconnection.is_(False),
                Credential.refresh_failure_count < max_failures,
                Credential.expires_at <= refresh_before,
                sa.or_(Credential.refresh_locked_until.is_(None), Credential.refresh_locked_until <= now),
                sa.or_(Credential.proactive_refresh_at.is_(None), Credential.proactive_refresh_at <= now),
            )
            .order_by(Credential.expires_at.asc())
            .limit(limit)
        )
        result = await self.execute(stmt)
        return list(result.all())

    async def count_expiring_between(self, provider: StorageProvider, start: datetime, end: datetime) -> int:
        stmt = sa.select(sa.func.count(Credential.id)).where(
            Credential.provider == provider,
            Credential.refresh_token.is_not(None),
            Credential.expires_at > start,
            Credential.expires_at <= end,
        )
        result = await self._db.session.execute(stmt)
        return int(result.scalar_one())

    async def count_requiring_reconnection(self, provider: StorageProvider) -> int:
        stmt = sa.select(sa.func.count(Credential.id)).where(
            Credential.provider == provider, Credential.requires_reconnection.is_(True)
        )
        result = await self._db.session.execute(stmt)
        return int(result.scalar_one())

    async def list_for_provider(self, provider: StorageProvider, after_id: int, limit: int) -> list[Credential]:
        stmt = (
            self.base_stmt.where(Credential.provider == provider, Credential.id > after_id)
            .order_by(Credential.id.asc())
            .limit(limit)
        )
        result = await self.execute(stmt)
        return list(result.all())

    async def record_notification_state(
        self,
        user_id: int,
        provider: StorageProvider,
        failure_count: int,
        last_notification_at: datetime | None = None,
    ) -> None:
        """Mirror notification delivery state onto the credential without bumping ``version``.

        A plain table UPDATE, so an in-flight refresh of the same credential still commits.
        """
        values: dict[str, object] = {"notification_failure_count": failure_count}
        if last_notification_at is not None:
            values["last_notification_at"] = last_notification_at
        table = Credential.__table__
        await self._db.session.execute(
            sa.update(table).where(table.c.user_id == user_id, table.c.provider == provider).values(**values)
        )
