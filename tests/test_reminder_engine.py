import asyncio
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

import db
from app.services import reminder_engine
from app.utils.clock import CAMPUS_TZ

WINDOW = dict(lead_minutes=5, catchup_minutes=10, lookback_minutes=15)


def at(hour, minute, day=19):
    """Campus time on the week of Monday 2026-10-19."""
    return datetime(2026, 10, day, hour, minute, tzinfo=CAMPUS_TZ)


async def _seed(quiz_reminder=True, day="周一", start="09:00"):
    uid = await db.insert_user("Student@Example.com")
    cid = await db.insert_course(
        uid, day, start, "10:30", name="Linear Algebra", quiz_reminder=quiz_reminder
    )
    return uid, cid


@pytest.mark.asyncio
async def test_reminder_sent_once_per_window(database, fake_mail):
    uid, cid = await _seed()

    first = await reminder_engine.run_sweep(at(8, 55), **WINDOW)
    assert (first.due, first.sent) == (1, 1)

    again = await reminder_engine.run_sweep(at(8, 58), **WINDOW)
    assert (again.due, again.sent, again.skipped) == (1, 0, 1)

    after = await reminder_engine.run_sweep(at(9, 10), **WINDOW)
    assert (after.due, after.sent) == (0, 0)

    assert len(fake_mail.sent) == 1
    to, subject, body = fake_mail.sent[0]
    assert to == "student@example.com"
    assert subject == "Quiz reminder: Linear Algebra"
    assert "5 minutes" in body

    logs = await db.search_email_logs(uid)
    assert [(r.course_id, r.course_name, r.status) for r in logs] == [
        (cid, "Linear Algebra reminder", "sent")
    ]


@pytest.mark.asyncio
async def test_back_to_back_sweeps_record_one_send(database, fake_mail):
    uid, _ = await _seed()
    await reminder_engine.run_sweep(at(9, 0), **WINDOW)
    await reminder_engine.run_sweep(at(9, 0), **WINDOW)
    logs = await db.search_email_logs(uid)
    assert [r.status for r in logs] == ["sent"]


@pytest.mark.asyncio
async def test_overlapping_sweeps_send_once(database, fake_mail):
    uid, _ = await _seed()
    reports = await asyncio.gather(
        reminder_engine.run_sweep(at(8, 56), **WINDOW),
        reminder_engine.run_sweep(at(8, 56), **WINDOW),
    )
    assert sum(r.sent for r in reports) == 1
    assert len(fake_mail.sent) == 1
    assert len(await db.search_email_logs(uid)) == 1


@pytest.mark.asyncio
async def test_disabled_course_never_logged(database, fake_mail):
    uid, _ = await _seed(quiz_reminder=False)
    for minute in range(50, 60):
        await reminder_engine.run_sweep(at(8, minute), **WINDOW)
    assert fake_mail.sent == []
    assert await db.search_email_logs(uid) == []


@pytest.mark.asyncio
async def test_nothing_due_outside_window(database, fake_mail):
    uid, _ = await _seed()
    for now in (at(8, 54), at(9, 6), at(12, 0), at(8, 55, day=20)):
        report = await reminder_engine.run_sweep(now, **WINDOW)
        assert report.due == 0
    assert await db.search_email_logs(uid) == []


@pytest.mark.asyncio
async def test_failed_send_is_retried_by_next_sweep(database, fake_mail):
    uid, cid = await _seed()
    fake_mail.fail_for.add("student@example.com")

    failed = await reminder_engine.run_sweep(at(8, 55), **WINDOW)
    assert failed.failed == 1

    fake_mail.fail_for.clear()
    retried = await reminder_engine.run_sweep(at(8, 57), **WINDOW)
    assert retried.sent == 1

    logs = await db.search_email_logs(uid)
    assert sorted(r.status for r in logs) == ["failed", "sent"]
    failed_log = next(r for r in logs if r.status == "failed")
    assert "mailbox unavailable" in failed_log.last_error


@pytest.mark.asyncio
async def test_unexpected_send_error_releases_the_claim(database, fake_mail):
    uid, cid = await _seed()
    working_send = fake_mail.send

    def broken_send(sender, recipient, message):
        raise RuntimeError("template exploded")

    fake_mail.send = broken_send
    failed = await reminder_engine.run_sweep(at(8, 55), **WINDOW)
    assert failed.failed == 1

    fake_mail.send = working_send
    retried = await reminder_engine.run_sweep(at(8, 56), **WINDOW)
    assert retried.sent == 1
    assert len(fake_mail.sent) == 1

    logs = await db.search_email_logs(uid)
    assert sorted(r.status for r in logs) == ["failed", "sent"]
    failed_log = next(r for r in logs if r.status == "failed")
    assert "RuntimeError: template exploded" in failed_log.last_error


@pytest.mark.asyncio
async def test_claim_rejects_second_writer(database):
    uid, cid = await _seed()
    window_start = at(8, 55)
    assert await db.claim_delivery(uid, cid, "x", window_start) is not None
    assert await db.claim_delivery(uid, cid, "x", window_start) is None


@pytest.mark.asyncio
async def test_store_failure_aborts_sweep(database, fake_mail, monkeypatch):
    uid, _ = await _seed()

    async def unavailable():
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "fetch_reminder_slots", unavailable)
    with pytest.raises(OperationalError):
        await reminder_engine.run_sweep(at(8, 55), **WINDOW)

    assert fake_mail.sent == []
    assert await db.search_email_logs(uid) == []


@pytest.mark.asyncio
async def test_course_with_bad_schedule_is_skipped(database, fake_mail):
    uid, _ = await _seed()
    await db.insert_course(uid, "someday", "09:00", "10:00", quiz_reminder=True)
    report = await reminder_engine.run_sweep(at(8, 55), **WINDOW)
    assert (report.checked, report.sent) == (1, 1)


@pytest.mark.asyncio
async def test_reminded_this_week_flag(database, fake_mail):
    uid, cid = await _seed()
    other = await db.insert_course(uid, "周二", "14:00", "15:00", name="Physics")
    await reminder_engine.run_sweep(at(8, 55), **WINDOW)

    this_week = {c.id: c.reminded_this_week for c in await db.list_courses_with_reminder_state(uid, now=at(12, 0))}
    assert this_week == {cid: True, other: False}

    next_week = await db.list_courses_with_reminder_state(uid, now=at(8, 0, day=26))
    assert not any(c.reminded_this_week for c in next_week)
