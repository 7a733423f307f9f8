from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from sqlalchemy.orm import sessionmaker

from adforge.config import settings
from adforge.db.base import SessionLocal, utcnow
from adforge.db.enums import MediaKindEnum
from adforge.db.repositories.credits import CreditsRepository
from adforge.errors import InsufficientCredits

logger = logging.getLogger(__name__)

ACTION_TYPES = {
    MediaKindEnum.text: "text_generation",
    MediaKindEnum.image: "image_generation",
    MediaKindEnum.video: "video_generation",
}


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    user_id: str
    credits: int
    action_type: str
    campaign_ref: Optional[str] = None


@dataclass(frozen=True)
class CreditStatus:
    user_id: str
    used: int
    limit: int
    reserved: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used - self.reserved)


class CreditLedger:
    """
    Per-user credit metering: check-and-reserve, then commit or release.

    Every state change is a guarded single-row UPDATE in the database, so any number of concurrent
    requests (in this process or others) can share one account safely.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker = SessionLocal,
        costs: Optional[Mapping[str, int]] = None,
        default_limit: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._costs = dict(costs or settings.credit_costs)
        self._default_limit = settings.CREDITS_DEFAULT_LIMIT if default_limit is None else default_limit

    def cost_for(self, media_kind: MediaKindEnum) -> int:
        try:
            return int(self._costs[media_kind.value])
        except KeyError as exc:
            raise ValueError(f"No credit cost configured for {media_kind.value}") from exc

    def _ensure_account_sync(self, user_id: str, credits_limit: Optional[int] = None) -> None:
        with self._session_factory() as session:
            CreditsRepository(session).ensure_account(
                user_id,
                credits_limit=self._default_limit if credits_limit is None else credits_limit,
            )

    async def ensure_account(self, user_id: str, *, credits_limit: Optional[int] = None) -> None:
        await asyncio.to_thread(self._ensure_account_sync, user_id, credits_limit)

    async def reserve(
        self,
        user_id: str,
        media_kind: MediaKindEnum,
        *,
        campaign_ref: Optional[str] = None,
    ) -> Reservation:
        return await self.reserve_credits(
            user_id,
            self.cost_for(media_kind),
            action_type=ACTION_TYPES[media_kind],
            campaign_ref=campaign_ref,
        )

    async def reserve_credits(
        self,
        user_id: str,
        credits: int,
        *,
        action_type: str,
        campaign_ref: Optional[str] = None,
    ) -> Reservation:
        def _reserve() -> Optional[Reservation]:
            self._ensure_account_sync(user_id)
            with self._session_factory() as session:
                row = CreditsRepository(session).try_reserve(
                    user_id=user_id,
                    credits=credits,
                    action_type=action_type,
                    campaign_ref=campaign_ref,
                )
                if row is None:
                    return None
                return Reservation(
                    reservation_id=row.id,
                    user_id=row.user_id,
                    credits=row.credits,
                    action_type=row.action_type,
                    campaign_ref=row.campaign_ref,
                )

        reservation = await asyncio.to_thread(_reserve)
        if reservation is None:
            current = await self.status(user_id)
            logger.info(
                "credits.insufficient",
                extra={"user_id": user_id, "required": credits, "remaining": current.remaining},
            )
            raise InsufficientCredits(user_id=user_id, required=credits, remaining=current.remaining)

        logger.info(
            "credits.reserved",
            extra={"user_id": user_id, "reservation_id": reservation.reservation_id, "credits": credits},
        )
        return reservation

    async def commit(self, reservation: Reservation, *, provider_id: Optional[str] = None) -> bool:
        def _commit() -> bool:
            with self._session_factory() as session:
                entry = CreditsRepository(session).commit_reservation(
                    reservation.reservation_id, provider_id=provider_id
                )
                return entry is not None

        committed = await asyncio.to_thread(_commit)
        if committed:
            logger.info(
                "credits.committed",
                extra={"user_id": reservation.user_id, "reservation_id": reservation.reservation_id},
            )
        else:
            logger.warning(
                "credits.commit_skipped",
                extra={"user_id": reservation.user_id, "reservation_id": reservation.reservation_id},
            )
        return committed

    async def release(self, reservation: Reservation) -> bool:
        def _release() -> bool:
            with self._session_factory() as session:
                return CreditsRepository(session).release_reservation(reservation.reservation_id)

        released = await asyncio.to_thread(_release)
        logger.info(
            "credits.released",
            extra={
                "user_id": reservation.user_id,
                "reservation_id": reservation.reservation_id,
                "released": released,
            },
        )
        return released

    async def status(self, user_id: str) -> CreditStatus:
        def _status() -> CreditStatus:
            with self._session_factory() as session:
                repo = CreditsRepository(session)
                account = repo.get_account(user_id)
                used = repo.consumed_total(user_id)
                if account is None:
                    return CreditStatus(user_id=user_id, used=used, limit=self._default_limit, reserved=0)
                return CreditStatus(
                    user_id=user_id,
                    used=used,
                    limit=account.credits_limit,
                    reserved=account.credits_reserved,
                )

        return await asyncio.to_thread(_status)

    async def release_expired(self, *, ttl_seconds: Optional[int] = None) -> int:
        """Release reservations left pending by requests that never finished."""
        ttl = settings.CREDIT_RESERVATION_TTL_SECONDS if ttl_seconds is None else ttl_seconds

        def _sweep() -> int:
            released = 0
            with self._session_factory() as session:
                repo = CreditsRepository(session)
                for reservation_id in repo.pending_reservation_ids(created_before=utcnow() - timedelta(seconds=ttl)):
                    if repo.release_reservation(reservation_id):
                        released += 1
            return released

        released = await asyncio.to_thread(_sweep)
        if released:
            logger.warning("credits.expired_reservations_released", extra={"count": released})
        return released

    async def run_sweeper(self, interval_seconds: Optional[float] = None, *, ttl_seconds: Optional[int] = None) -> None:
        """Release expired reservations every `interval_seconds` until cancelled."""
        interval = settings.CREDIT_RESERVATION_SWEEP_SECONDS if interval_seconds is None else interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.release_expired(ttl_seconds=ttl_seconds)
            except Exception:  # noqa: BLE001
                logger.exception("credits.sweep_failed")
