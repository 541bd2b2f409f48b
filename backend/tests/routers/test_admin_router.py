import random
from datetime import date
from typing import Any, cast

import pytest
from fakes import DummySession, FakeReservationRepo, Store
from fastapi import HTTPException
from fastapi.routing import APIRoute
from placement.deps import require_admin
from placement.domain.actors import Actor, Role
from placement.domain.errors import LotteryAlreadyRunningError
from placement.infrastructure.notifications import LoggingNotificationDispatcher
from placement.models import ReservationStatus
from placement.routers import admin as router
from placement.routers import errors as router_errors
from placement.usecases.lottery import LotteryRunResult
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

ADMIN = Actor(user_id=50, role=Role.ADMIN)


@pytest.fixture(autouse=True)
def _stub_repositories(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "SqlAlchemySlotRepository",
        "SqlAlchemyReservationRepository",
        "SqlAlchemyStudentRepository",
        "SqlAlchemySettingsRepository",
    ):
        monkeypatch.setattr(router, name, lambda s: s)  # type: ignore[assignment]


@pytest.fixture
def audit_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_emit(**kwargs: Any) -> None:
        calls.append(kwargs)

    monkeypatch.setattr(router_errors, "emit_audit_log", fake_emit)
    return calls


@pytest.mark.asyncio
async def test_lottery_run_releases_lock_and_notifies_winners(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    store = Store()
    store.add_student(1, email="aoi@example.com")
    store.add_student(2)
    slot = store.add_slot(slot_date=date(2026, 11, 3))
    won = store.add_reservation(slot, 1, priority=1)
    silent = store.add_reservation(slot, 2, priority=1)
    released: list[str] = []

    async def fake_acquire(*args: object, **kwargs: object) -> str:
        return "token-1"

    async def fake_release(*args: object, token: str) -> None:
        released.append(token)

    async def fake_run(*args: object, **kwargs: object) -> LotteryRunResult:
        return LotteryRunResult(winners=[won, silent], deleted=3, remaining=1, students=dict(store.students))

    monkeypatch.setattr(router.lottery_usecase, "acquire_run_lock", fake_acquire)
    monkeypatch.setattr(router.lottery_usecase, "release_run_lock", fake_release)
    monkeypatch.setattr(router.lottery_usecase, "run_lottery", fake_run)
    dispatcher = LoggingNotificationDispatcher()

    result = await router.run_lottery(
        session=cast(AsyncSession, DummySession()),
        actor=ADMIN,
        rng=random.Random(1),
        dispatcher=dispatcher,
    )

    assert (result.winners, result.deleted, result.remaining) == (2, 3, 1)
    assert released == ["token-1"]
    assert audit_calls[0]["action"] == "lottery.completed"
    assert audit_calls[0]["extra"] == {"winners": 2, "deleted": 3, "remaining": 1}
    # Student 2 has no address on file.
    assert [r.to for r in dispatcher.sent] == ["aoi@example.com"]


@pytest.mark.asyncio
async def test_lottery_run_rejects_concurrent_run(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_acquire(*args: object, **kwargs: object) -> str:
        raise LotteryAlreadyRunningError("a lottery run is already in progress")

    async def fake_run(*args: object, **kwargs: object) -> LotteryRunResult:
        raise AssertionError("must not run without the lock")

    monkeypatch.setattr(router.lottery_usecase, "acquire_run_lock", fake_acquire)
    monkeypatch.setattr(router.lottery_usecase, "run_lottery", fake_run)

    with pytest.raises(HTTPException) as excinfo:
        await router.run_lottery(
            session=cast(AsyncSession, DummySession()),
            actor=ADMIN,
            rng=random.Random(1),
            dispatcher=LoggingNotificationDispatcher(),
        )
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["code"] == "lottery_already_running"


@pytest.mark.asyncio
async def test_lottery_failure_still_releases_lock(monkeypatch: pytest.MonkeyPatch) -> None:
    released: list[str] = []

    async def fake_acquire(*args: object, **kwargs: object) -> str:
        return "token-2"

    async def fake_release(*args: object, token: str) -> None:
        released.append(token)

    async def fake_run(*args: object, **kwargs: object) -> LotteryRunResult:
        raise RuntimeError("db went away")

    monkeypatch.setattr(router.lottery_usecase, "acquire_run_lock", fake_acquire)
    monkeypatch.setattr(router.lottery_usecase, "release_run_lock", fake_release)
    monkeypatch.setattr(router.lottery_usecase, "run_lottery", fake_run)

    with pytest.raises(RuntimeError):
        await router.run_lottery(
            session=cast(AsyncSession, DummySession()),
            actor=ADMIN,
            rng=random.Random(1),
            dispatcher=LoggingNotificationDispatcher(),
        )
    assert released == ["token-2"]


@pytest.mark.asyncio
async def test_lottery_with_nothing_to_draw_is_quiet(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_acquire(*args: object, **kwargs: object) -> str:
        return "token-3"

    async def fake_release(*args: object, token: str) -> None:
        return None

    async def fake_run(*args: object, **kwargs: object) -> LotteryRunResult:
        return LotteryRunResult()

    monkeypatch.setattr(router.lottery_usecase, "acquire_run_lock", fake_acquire)
    monkeypatch.setattr(router.lottery_usecase, "release_run_lock", fake_release)
    monkeypatch.setattr(router.lottery_usecase, "run_lottery", fake_run)
    dispatcher = LoggingNotificationDispatcher()

    result = await router.run_lottery(
        session=cast(AsyncSession, DummySession()),
        actor=ADMIN,
        rng=random.Random(1),
        dispatcher=dispatcher,
    )
    assert result.status == "ok"
    assert result.winners == 0
    assert dispatcher.sent == []
    assert len(audit_calls) == 1


@pytest.mark.asyncio
async def test_store_failure_reports_a_failed_run(monkeypatch: pytest.MonkeyPatch) -> None:
    released: list[str] = []

    async def fake_acquire(*args: object, **kwargs: object) -> str:
        return "token-4"

    async def fake_release(*args: object, token: str) -> None:
        released.append(token)

    async def fake_run(*args: object, **kwargs: object) -> LotteryRunResult:
        raise OperationalError("UPDATE reservations", None, Exception("Lost connection"))

    monkeypatch.setattr(router.lottery_usecase, "acquire_run_lock", fake_acquire)
    monkeypatch.setattr(router.lottery_usecase, "release_run_lock", fake_release)
    monkeypatch.setattr(router.lottery_usecase, "run_lottery", fake_run)

    with pytest.raises(HTTPException) as excinfo:
        await router.run_lottery(
            session=cast(AsyncSession, DummySession()),
            actor=ADMIN,
            rng=random.Random(1),
            dispatcher=LoggingNotificationDispatcher(),
        )
    assert excinfo.value.status_code == 500
    assert excinfo.value.detail["code"] == "lottery_run_failed"
    assert released == ["token-4"]


@pytest.mark.asyncio
async def test_list_reservations_filters_by_status_and_day() -> None:
    store = Store()
    for student_id in (1, 2, 3):
        store.add_student(student_id)
    monday = store.add_slot(slot_date=date(2026, 11, 2))
    tuesday = store.add_slot(slot_date=date(2026, 11, 3))
    wanted = store.add_reservation(monday, 1)
    store.add_reservation(monday, 2, status=ReservationStatus.COMPLETED)
    store.add_reservation(tuesday, 3)

    rows = await router.list_reservations(
        status_filter=ReservationStatus.CONFIRMED,
        day=date(2026, 11, 2),
        session=cast(AsyncSession, FakeReservationRepo(store)),
    )
    assert [r.reservation_id for r in rows] == [wanted.id]

    everything = await router.list_reservations(
        status_filter=None, day=None, session=cast(AsyncSession, FakeReservationRepo(store))
    )
    assert len(everything) == 3


def test_list_reservations_route_is_admin_only() -> None:
    routes = [r for r in router.router.routes if isinstance(r, APIRoute) and r.path == "/admin/reservations"]
    assert [sorted(r.methods) for r in routes] == [["GET"]]
    assert require_admin in {dep.call for dep in routes[0].dependant.dependencies}
