from datetime import date

import pytest
import pytest_asyncio

from fitslot.app.core.notifications import LoggingPromotionSender, TelegramPromotionSender
from fitslot.app.domain.errors import NotFoundError
from fitslot.app.domain.models import Plan, Role
from fitslot.app.services.slot_services import SlotAvailability
from fitslot.app.services.yield_services import (
    YieldScanner,
    YieldTarget,
    build_drop_in_link,
    build_promo_message,
    is_underperforming,
)
from fitslot.app.tests_new.helpers import BOOKING_DAY, at, fixed_clock
from fitslot.app.workers.yield_scan import _scan_once


def _slot(booked: int, capacity: int = 6) -> SlotAvailability:
    return SlotAvailability(start=at(9), end=at(9, 20), capacity=capacity, booked_count=booked)


@pytest.mark.parametrize(
    "booked,capacity,expected",
    [(0, 6, True), (2, 6, True), (3, 6, False), (5, 6, False), (6, 6, False), (0, 0, False), (1, 3, True)],
)
def test_underperforming_threshold(booked, capacity, expected):
    assert is_underperforming(_slot(booked, capacity)) is expected


class RecordingSender:
    def __init__(self):
        self.results = []

    async def send(self, result):
        self.results.append(result)
        return len(result.targets)


@pytest_asyncio.fixture
async def yield_studio(make_studio, make_user, add_booking):
    studio = await make_studio(opening_hour=9, closing_hour=10)
    for start, count in ((at(9), 2), (at(9, 20), 3), (at(9, 40), 5)):
        for _ in range(count):
            await add_booking(await make_user(studio), studio, start)
    return studio


@pytest.mark.asyncio
async def test_scan_flags_slots_under_half_and_targets_digital_members(db, yield_studio, make_studio, make_user):
    other = await make_studio("Studio Lyon")
    anna = await make_user(yield_studio, plan=Plan.DIGITAL, first_name="Anna", telegram_id=1001)
    ben = await make_user(yield_studio, plan=Plan.DIGITAL, first_name="Ben")
    await make_user(yield_studio, plan=Plan.DIGITAL, email="")
    await make_user(yield_studio, plan=Plan.DIGITAL, role=Role.COACH)
    await make_user(other, plan=Plan.DIGITAL)

    result = await YieldScanner(db, clock=fixed_clock).scan(yield_studio.id)

    assert result.target_date == BOOKING_DAY
    assert result.empty_slots_found == 1
    assert result.underperforming[0].start == at(9)
    assert result.underperforming[0].booked_count == 2
    assert [t.user_id for t in result.targets] == [anna.id, ben.id]
    assert {t.slot.start for t in result.targets} == {at(9)}
    assert result.targets[0].telegram_id == 1001


@pytest.mark.asyncio
async def test_scan_is_repeatable(db, yield_studio, make_user):
    await make_user(yield_studio, plan=Plan.DIGITAL)
    scanner = YieldScanner(db, clock=fixed_clock)
    first = await scanner.scan(yield_studio.id, BOOKING_DAY)
    second = await scanner.scan(yield_studio.id, BOOKING_DAY)
    assert first.targets == second.targets
    assert first.underperforming == second.underperforming


@pytest.mark.asyncio
async def test_no_underperforming_slots_means_no_targets(db, make_studio, make_user):
    studio = await make_studio(max_capacity_per_slot=0)
    await make_user(studio, plan=Plan.DIGITAL)
    result = await YieldScanner(db, clock=fixed_clock).scan(studio.id)
    assert result.empty_slots_found == 0
    assert result.targets == []


@pytest.mark.asyncio
async def test_scan_unknown_studio(db):
    with pytest.raises(NotFoundError):
        await YieldScanner(db).scan(999, date(2031, 3, 4))


def test_promo_message_contains_prices_and_link():
    slot = _slot(1)
    target = YieldTarget(user_id=1, email="a@example.com", telegram_id=None, first_name="Anna", slot=slot)
    text = build_promo_message(
        target, studio_id=7, studio_name="Studio Bastille", public_url="https://fit.example/", tz="Europe/Paris"
    )
    assert text.startswith("Hello Anna,")
    assert "Studio Bastille" in text
    assert "09:00 - 09:20" in text
    assert "15.00 EUR" in text and "25.00 EUR" in text
    assert build_drop_in_link("https://fit.example/", 7, slot) in text
    assert build_drop_in_link("https://fit.example/", 7, slot).startswith(
        "https://fit.example/member/bookings?studioId=7&date=2031-03-04T08%3A00%3A00%2B00%3A00"
    )


@pytest.mark.asyncio
async def test_worker_promotes_each_studio_once_per_date(db, yield_studio, make_user):
    await make_user(yield_studio, plan=Plan.DIGITAL)
    sender = RecordingSender()
    promoted: dict = {}
    scanner = YieldScanner(db, clock=fixed_clock)

    assert await _scan_once(db, scanner, sender, promoted, days_ahead=1) == 1
    assert await _scan_once(db, scanner, sender, promoted, days_ahead=1) == 0
    assert len(sender.results) == 1
    assert promoted == {yield_studio.id: BOOKING_DAY}


@pytest.mark.asyncio
async def test_worker_keeps_going_when_a_studio_fails(monkeypatch, db, yield_studio, make_studio, make_user):
    second = await make_studio("Studio Lyon", opening_hour=9, closing_hour=10)
    await make_user(second, plan=Plan.DIGITAL)
    scanner = YieldScanner(db, clock=fixed_clock)
    real_scan = scanner.scan

    async def flaky_scan(studio_id, target_date=None):
        if studio_id == yield_studio.id:
            raise RuntimeError("boom")
        return await real_scan(studio_id, target_date)

    monkeypatch.setattr(scanner, "scan", flaky_scan)
    sender = RecordingSender()
    promoted: dict = {}
    assert await _scan_once(db, scanner, sender, promoted) == 1
    assert list(promoted) == [second.id]


class FakeBot:
    def __init__(self):
        self.sent = []

    async def send_message(self, chat_id, text, reply_markup=None, **kwargs):
        self.sent.append((chat_id, text))


@pytest.mark.asyncio
async def test_telegram_sender_skips_members_without_chat(db, yield_studio, make_user):
    await make_user(yield_studio, plan=Plan.DIGITAL, telegram_id=555)
    await make_user(yield_studio, plan=Plan.DIGITAL)
    result = await YieldScanner(db, clock=fixed_clock).scan(yield_studio.id)
    bot = FakeBot()

    sent = await TelegramPromotionSender(bot, "https://fit.example").send(result)

    assert sent == 1
    assert [chat for chat, _ in bot.sent] == [555]
    assert "https://fit.example/member/bookings?" in bot.sent[0][1]
    assert await LoggingPromotionSender("https://fit.example").send(result) == 0
