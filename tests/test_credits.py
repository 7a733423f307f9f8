from __future__ import annotations

import asyncio
import contextlib
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from adforge.db.base import utcnow
from adforge.db.enums import MediaKindEnum, ReservationStatusEnum
from adforge.db.models import CreditLedgerEntry, CreditReservation
from adforge.errors import InsufficientCredits
from adforge.services.credits import CreditLedger


def test_reserve_then_commit_writes_ledger_entry(db_session):
    ledger = CreditLedger(default_limit=100)

    async def run():
        reservation = await ledger.reserve("user_1", MediaKindEnum.image, campaign_ref="camp_1")
        reserved = await ledger.status("user_1")
        committed = await ledger.commit(reservation, provider_id="replicate_sdxl")
        return reservation, reserved, committed, await ledger.status("user_1")

    reservation, reserved, committed, final = asyncio.run(run())

    assert reservation.credits == 5
    assert reservation.action_type == "image_generation"
    assert reserved.reserved == 5
    assert reserved.used == 0
    assert reserved.remaining == 95
    assert committed is True
    assert final.used == 5
    assert final.reserved == 0
    assert final.remaining == 95

    entries = db_session.scalars(select(CreditLedgerEntry)).all()
    assert len(entries) == 1
    assert entries[0].credits_consumed == 5
    assert entries[0].campaign_ref == "camp_1"
    assert entries[0].provider_id == "replicate_sdxl"
    assert entries[0].reservation_id == reservation.reservation_id


def test_concurrent_reservations_never_overspend():
    ledger = CreditLedger(default_limit=50)

    async def attempt():
        try:
            return await ledger.reserve("user_1", MediaKindEnum.video)
        except InsufficientCredits:
            return None

    async def run():
        await ledger.ensure_account("user_1")
        results = await asyncio.gather(*(attempt() for _ in range(8)))
        granted = [reservation for reservation in results if reservation is not None]
        commits = await asyncio.gather(*(ledger.commit(reservation) for reservation in granted))
        return granted, commits, await ledger.status("user_1")

    granted, commits, final = asyncio.run(run())

    assert len(granted) == 50 // 15
    assert all(commits)
    assert final.used == 45
    assert final.reserved == 0
    assert final.remaining == 5


def test_insufficient_credits_fails_without_touching_balance(db_session):
    ledger = CreditLedger(default_limit=3)

    async def run():
        with pytest.raises(InsufficientCredits) as excinfo:
            await ledger.reserve("user_1", MediaKindEnum.video)
        return excinfo.value, await ledger.status("user_1")

    error, final = asyncio.run(run())

    assert error.required == 15
    assert error.remaining == 3
    assert final.used == 0
    assert final.reserved == 0
    assert final.remaining == 3
    assert db_session.scalars(select(CreditReservation)).all() == []


def test_release_is_idempotent_and_blocks_commit():
    ledger = CreditLedger(default_limit=20)

    async def run():
        reservation = await ledger.reserve("user_1", MediaKindEnum.video)
        first = await ledger.release(reservation)
        second = await ledger.release(reservation)
        committed = await ledger.commit(reservation)
        return first, second, committed, await ledger.status("user_1")

    first, second, committed, final = asyncio.run(run())

    assert first is True
    assert second is False
    assert committed is False
    assert final.used == 0
    assert final.reserved == 0
    assert final.remaining == 20


def test_release_expired_frees_abandoned_reservations(db_session):
    ledger = CreditLedger(default_limit=20)

    async def reserve():
        return await ledger.reserve("user_1", MediaKindEnum.image), await ledger.reserve("user_1", MediaKindEnum.text)

    stale, fresh = asyncio.run(reserve())
    db_session.execute(
        update(CreditReservation)
        .where(CreditReservation.id == stale.reservation_id)
        .values(created_at=utcnow() - timedelta(hours=2))
    )
    db_session.commit()

    async def sweep():
        released = await ledger.release_expired(ttl_seconds=1800)
        return released, await ledger.status("user_1")

    released, final = asyncio.run(sweep())

    assert released == 1
    assert final.reserved == fresh.credits
    db_session.expire_all()
    statuses = {row.id: row.status for row in db_session.scalars(select(CreditReservation))}
    assert statuses[stale.reservation_id] == ReservationStatusEnum.released
    assert statuses[fresh.reservation_id] == ReservationStatusEnum.pending


def test_sweeper_keeps_releasing_while_the_service_runs(db_session):
    ledger = CreditLedger(default_limit=20)
    stale = asyncio.run(ledger.reserve("user_1", MediaKindEnum.image))
    db_session.execute(
        update(CreditReservation)
        .where(CreditReservation.id == stale.reservation_id)
        .values(created_at=utcnow() - timedelta(hours=2))
    )
    db_session.commit()

    async def run():
        sweeper = asyncio.create_task(ledger.run_sweeper(0.01, ttl_seconds=1800))
        try:
            for _ in range(200):
                status = await ledger.status("user_1")
                if status.reserved == 0:
                    return status
                await asyncio.sleep(0.01)
            return status
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    final = asyncio.run(run())

    assert final.reserved == 0
    assert final.used == 0
    db_session.expire_all()
    assert db_session.get(CreditReservation, stale.reservation_id).status == ReservationStatusEnum.released


def test_status_for_unknown_user_uses_default_limit():
    ledger = CreditLedger(default_limit=40)

    final = asyncio.run(ledger.status("nobody"))

    assert final.used == 0
    assert final.limit == 40
    assert final.remaining == 40


def test_cost_table_comes_from_configuration():
    ledger = CreditLedger(costs={"text": 2, "image": 7, "video": 20})

    assert ledger.cost_for(MediaKindEnum.text) == 2
    assert ledger.cost_for(MediaKindEnum.image) == 7
    assert ledger.cost_for(MediaKindEnum.video) == 20
