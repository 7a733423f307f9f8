from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from adforge.db.base import utcnow
from adforge.db.enums import ReservationStatusEnum
from adforge.db.models import CreditAccount, CreditLedgerEntry, CreditReservation
from adforge.db.repositories.base import Repository


class CreditsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def ensure_account(self, user_id: str, *, credits_limit: int) -> None:
        now = utcnow()
        stmt = (
            self.upsert_statement(CreditAccount)
            .values(
                user_id=user_id,
                credits_limit=credits_limit,
                credits_used=0,
                credits_reserved=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=[CreditAccount.user_id])
        )
        self.session.execute(stmt)
        self.session.commit()

    def get_account(self, user_id: str) -> Optional[CreditAccount]:
        return self.session.get(CreditAccount, user_id)

    def try_reserve(
        self,
        *,
        user_id: str,
        credits: int,
        action_type: str,
        campaign_ref: Optional[str],
    ) -> Optional[CreditReservation]:
        """
        Reserve credits with a single guarded UPDATE.

        The WHERE clause is evaluated against the locked row, so concurrent reservations for the same
        user serialize on it and can never push used + reserved past the limit.
        """
        result = self.session.execute(
            update(CreditAccount)
            .where(
                CreditAccount.user_id == user_id,
                CreditAccount.credits_used + CreditAccount.credits_reserved + credits
                <= CreditAccount.credits_limit,
            )
            .values(
                credits_reserved=CreditAccount.credits_reserved + credits,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            return None

        reservation = CreditReservation(
            user_id=user_id,
            action_type=action_type,
            credits=credits,
            campaign_ref=campaign_ref,
            status=ReservationStatusEnum.pending,
        )
        self.session.add(reservation)
        self.session.commit()
        self.session.refresh(reservation)
        return reservation

    def _resolve(self, reservation_id: str, status: ReservationStatusEnum) -> Optional[CreditReservation]:
        result = self.session.execute(
            update(CreditReservation)
            .where(
                CreditReservation.id == reservation_id,
                CreditReservation.status == ReservationStatusEnum.pending,
            )
            .values(status=status, resolved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return self.session.get(CreditReservation, reservation_id)

    def commit_reservation(
        self,
        reservation_id: str,
        *,
        provider_id: Optional[str] = None,
    ) -> Optional[CreditLedgerEntry]:
        reservation = self._resolve(reservation_id, ReservationStatusEnum.committed)
        if reservation is None:
            self.session.rollback()
            return None

        self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == reservation.user_id)
            .values(
                credits_reserved=CreditAccount.credits_reserved - reservation.credits,
                credits_used=CreditAccount.credits_used + reservation.credits,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        entry = CreditLedgerEntry(
            user_id=reservation.user_id,
            action_type=reservation.action_type,
            credits_consumed=reservation.credits,
            campaign_ref=reservation.campaign_ref,
            reservation_id=reservation.id,
            provider_id=provider_id,
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def release_reservation(self, reservation_id: str) -> bool:
        reservation = self._resolve(reservation_id, ReservationStatusEnum.released)
        if reservation is None:
            self.session.rollback()
            return False

        self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == reservation.user_id)
            .values(
                credits_reserved=CreditAccount.credits_reserved - reservation.credits,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return True

    def pending_reservation_ids(self, *, created_before: datetime) -> list[str]:
        stmt = select(CreditReservation.id).where(
            CreditReservation.status == ReservationStatusEnum.pending,
            CreditReservation.created_at < created_before,
        )
        return list(self.session.scalars(stmt).all())

    def consumed_total(self, user_id: str) -> int:
        stmt = select(func.coalesce(func.sum(CreditLedgerEntry.credits_consumed), 0)).where(
            CreditLedgerEntry.user_id == user_id
        )
        return int(self.session.scalar(stmt) or 0)
