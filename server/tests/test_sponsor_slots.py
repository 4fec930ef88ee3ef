from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from truststartup.models.sponsor_audit import SponsorAudit
from truststartup.models.startup import Startup
from truststartup.services import sponsorships
from truststartup.services.sponsorships import (
    InvalidSponsorDuration,
    NotStartupOwner,
    SponsorCapacityExceeded,
    SponsorSlotConflict,
    StartupNotFound,
    StartupNotSponsored,
    add_months,
    as_utc,
    first_free_slot,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
LATER = NOW + timedelta(days=30)


def _held_slots(db_session) -> list[int]:
    db_session.expire_all()
    return sorted(
        slot
        for (slot,) in db_session.query(Startup.sponsor_slot)
        .filter(Startup.is_sponsored.is_(True))
        .filter(Startup.sponsor_slot.isnot(None))
        .all()
    )


def test_add_months_clamps_to_end_of_month():
    assert add_months(datetime(2024, 1, 31, tzinfo=timezone.utc), 1) == datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert add_months(datetime(2023, 1, 31, tzinfo=timezone.utc), 1) == datetime(2023, 2, 28, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 11, 15, 8, 30, tzinfo=timezone.utc), 3) == datetime(
        2025, 2, 15, 8, 30, tzinfo=timezone.utc
    )
    assert add_months(datetime(2024, 5, 31, tzinfo=timezone.utc), 12) == datetime(2025, 5, 31, tzinfo=timezone.utc)


def test_first_free_slot_picks_lowest_gap():
    assert first_free_slot([], 20) == 1
    assert first_free_slot([1, 2, 3], 20) == 4
    assert first_free_slot([3, 1], 20) == 2
    assert first_free_slot([2, 2, 5], 3) == 1
    assert first_free_slot(range(1, 21), 20) is None


def test_assign_claims_lowest_slot_and_resets_counters(db_session, make_startup):
    startup = make_startup(ad_views=7, ad_clicks=3, ad_generated_revenue=12.5)

    result = sponsorships.assign_sponsor_slot(db_session, startup.id, 3, now=NOW)

    assert result.slot == 1
    assert result.already_sponsored is False
    assert result.expires_at == datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
    db_session.refresh(startup)
    assert startup.is_sponsored is True
    assert startup.sponsor_slot == 1
    assert as_utc(startup.sponsor_since) == NOW
    assert startup.sponsor_duration_months == 3
    assert (startup.ad_views, startup.ad_clicks, startup.ad_generated_revenue) == (0, 0, 0)

    audit = db_session.query(SponsorAudit).filter_by(startup_id=startup.id).one()
    assert audit.action == "Assigned"
    assert audit.slot == 1
    assert audit.months == 3


@pytest.mark.parametrize("months", [0, 13, -1])
def test_assign_rejects_months_outside_range(db_session, make_startup, months):
    startup = make_startup()
    with pytest.raises(InvalidSponsorDuration):
        sponsorships.assign_sponsor_slot(db_session, startup.id, months, now=NOW)
    assert _held_slots(db_session) == []


def test_assign_unknown_startup_raises_not_found(db_session):
    with pytest.raises(StartupNotFound):
        sponsorships.assign_sponsor_slot(db_session, 9999, 1, now=NOW)


def test_assign_fails_when_every_slot_is_taken(db_session, make_startup, make_sponsored):
    for slot in range(1, 21):
        make_sponsored(slot, LATER)
    latecomer = make_startup()

    with pytest.raises(SponsorCapacityExceeded) as excinfo:
        sponsorships.assign_sponsor_slot(db_session, latecomer.id, 1, now=NOW)

    assert excinfo.value.max_slots == 20
    assert _held_slots(db_session) == list(range(1, 21))
    db_session.refresh(latecomer)
    assert latecomer.is_sponsored is False
    assert latecomer.sponsor_slot is None
    assert db_session.query(SponsorAudit).filter_by(startup_id=latecomer.id).count() == 0


def test_capacity_follows_configured_slot_count(db_session, make_startup, monkeypatch):
    monkeypatch.setattr(sponsorships.settings, "SPONSOR_MAX_SLOTS", 2)
    first, second, third = make_startup(), make_startup(), make_startup()

    assert sponsorships.assign_sponsor_slot(db_session, first.id, 1, now=NOW).slot == 1
    assert sponsorships.assign_sponsor_slot(db_session, second.id, 1, now=NOW).slot == 2
    with pytest.raises(SponsorCapacityExceeded):
        sponsorships.assign_sponsor_slot(db_session, third.id, 1, now=NOW)
    assert _held_slots(db_session) == [1, 2]


def test_released_slot_is_reused_before_higher_slots(db_session, founder, make_startup, make_sponsored):
    make_sponsored(1, LATER)
    middle = make_sponsored(2, LATER)
    make_sponsored(3, LATER)

    sponsorships.cancel_sponsorship(db_session, middle.id, founder)
    newcomer = make_startup()
    result = sponsorships.assign_sponsor_slot(db_session, newcomer.id, 1, now=NOW)

    assert result.slot == 2
    assert _held_slots(db_session) == [1, 2, 3]


def test_repeated_assign_for_active_sponsor_is_a_no_op(db_session, make_startup):
    startup = make_startup()
    first = sponsorships.assign_sponsor_slot(db_session, startup.id, 1, now=NOW)
    startup.ad_views = 5
    db_session.commit()

    second = sponsorships.assign_sponsor_slot(db_session, startup.id, 1, now=NOW + timedelta(minutes=5))

    assert second.already_sponsored is True
    assert second.slot == first.slot
    assert second.expires_at == first.expires_at
    db_session.refresh(startup)
    assert startup.ad_views == 5
    assert _held_slots(db_session) == [first.slot]
    assert db_session.query(SponsorAudit).filter_by(startup_id=startup.id).count() == 1


def test_lapsed_unswept_sponsor_keeps_its_slot_on_new_payment(db_session, make_sponsored):
    make_sponsored(1, LATER)
    lapsed = make_sponsored(4, NOW - timedelta(days=1), ad_views=40)

    result = sponsorships.assign_sponsor_slot(db_session, lapsed.id, 2, now=NOW)

    assert result.already_sponsored is False
    assert result.slot == 4
    assert result.expires_at == add_months(NOW, 2)
    db_session.refresh(lapsed)
    assert lapsed.ad_views == 0
    assert lapsed.sponsor_duration_months == 2


def test_assign_retries_after_losing_a_slot_race(db_session, make_startup, make_sponsored, monkeypatch):
    make_sponsored(1, LATER)
    target = make_startup()
    real_occupied = sponsorships._occupied_slots
    calls = {"n": 0}

    def stale_then_real(db, exclude_startup_id=None):
        calls["n"] += 1
        if calls["n"] == 1:
            # Scan that missed a concurrent writer's slot 1.
            return []
        return real_occupied(db, exclude_startup_id=exclude_startup_id)

    monkeypatch.setattr(sponsorships, "_occupied_slots", stale_then_real)

    result = sponsorships.assign_sponsor_slot(db_session, target.id, 1, now=NOW)

    assert calls["n"] == 2
    assert result.slot == 2
    assert _held_slots(db_session) == [1, 2]


def test_assign_gives_up_after_repeated_slot_conflicts(db_session, make_startup, make_sponsored, monkeypatch):
    make_sponsored(1, LATER)
    target = make_startup()
    monkeypatch.setattr(sponsorships, "_occupied_slots", lambda db, exclude_startup_id=None: [])

    with pytest.raises(SponsorSlotConflict) as excinfo:
        sponsorships.assign_sponsor_slot(db_session, target.id, 1, now=NOW)

    assert excinfo.value.attempts == sponsorships.settings.SPONSOR_ASSIGN_MAX_ATTEMPTS
    db_session.refresh(target)
    assert target.sponsor_slot is None
    assert _held_slots(db_session) == [1]


def test_sweep_releases_expired_slot_for_next_assign(db_session, make_startup, make_sponsored):
    expired_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sweep_at = datetime(2024, 1, 2, tzinfo=timezone.utc)
    holders = {}
    for slot in range(1, 21):
        expires = expired_at if slot == 5 else datetime(2024, 6, 1, tzinfo=timezone.utc)
        holders[slot] = make_sponsored(slot, expires, ad_views=slot)

    result = sponsorships.expire_sponsorships(db_session, now=sweep_at)

    assert result.checked == 1
    assert result.expired == 1
    assert result.expired_startup_ids == [holders[5].id]
    expired = holders[5]
    db_session.refresh(expired)
    assert expired.is_sponsored is False
    assert expired.sponsor_slot is None
    assert as_utc(expired.sponsor_expires_at) == expired_at
    assert expired.ad_views == 5
    assert db_session.query(SponsorAudit).filter_by(startup_id=expired.id, action="Expired").count() == 1

    newcomer = make_startup()
    assert sponsorships.assign_sponsor_slot(db_session, newcomer.id, 1, now=sweep_at).slot == 5


def test_sweep_leaves_active_sponsors_alone(db_session, make_sponsored):
    active = make_sponsored(1, LATER)

    result = sponsorships.expire_sponsorships(db_session, now=NOW)

    assert result.checked == 0
    db_session.refresh(active)
    assert active.is_sponsored is True
    assert active.sponsor_slot == 1


def test_expire_one_rechecks_current_expiry(db_session, make_sponsored):
    renewed = make_sponsored(1, LATER)

    assert sponsorships._expire_one(db_session, renewed.id, NOW) is False
    db_session.refresh(renewed)
    assert renewed.sponsor_slot == 1


def test_sweep_continues_after_a_failing_record(db_session, make_sponsored, monkeypatch):
    broken = make_sponsored(1, NOW - timedelta(days=2))
    fine = make_sponsored(2, NOW - timedelta(days=1))
    real_expire_one = sponsorships._expire_one

    def flaky(db, startup_id, now):
        if startup_id == broken.id:
            raise SQLAlchemyError("database is locked")
        return real_expire_one(db, startup_id, now)

    monkeypatch.setattr(sponsorships, "_expire_one", flaky)

    result = sponsorships.expire_sponsorships(db_session, now=NOW)

    assert (result.checked, result.expired, result.failed) == (2, 1, 1)
    assert result.expired_startup_ids == [fine.id]
    assert _held_slots(db_session) == [1]


def test_extend_adds_months_to_future_expiry(db_session, founder, make_sponsored):
    old_expiry = NOW + timedelta(days=20)
    startup = make_sponsored(3, old_expiry, ad_views=11)

    result = sponsorships.extend_sponsorship(db_session, startup.id, founder, 3, now=NOW)

    assert result.new_expires_at == add_months(old_expiry, 3)
    assert result.slot == 3
    assert result.duration_months == 4
    db_session.refresh(startup)
    assert startup.ad_views == 11
    assert startup.sponsor_slot == 3


def test_extend_after_expiry_counts_from_now(db_session, founder, make_sponsored):
    startup = make_sponsored(2, NOW - timedelta(days=3))

    result = sponsorships.extend_sponsorship(db_session, startup.id, founder, 2, now=NOW)

    assert result.new_expires_at == add_months(NOW, 2)
    db_session.refresh(startup)
    assert startup.is_sponsored is True


def test_extend_requires_a_held_slot(db_session, founder, make_startup):
    startup = make_startup()
    with pytest.raises(StartupNotSponsored):
        sponsorships.extend_sponsorship(db_session, startup.id, founder, 1, now=NOW)


def test_extend_rejects_non_positive_months(db_session, founder, make_sponsored):
    startup = make_sponsored(1, LATER)
    with pytest.raises(InvalidSponsorDuration):
        sponsorships.extend_sponsorship(db_session, startup.id, founder, 0, now=NOW)


def test_only_the_owner_can_extend_or_cancel(db_session, other_founder, make_sponsored):
    startup = make_sponsored(6, LATER, ad_views=2)
    before = (startup.is_sponsored, startup.sponsor_slot, as_utc(startup.sponsor_expires_at), startup.sponsor_duration_months)

    with pytest.raises(NotStartupOwner):
        sponsorships.extend_sponsorship(db_session, startup.id, other_founder, 2, now=NOW)
    with pytest.raises(NotStartupOwner):
        sponsorships.cancel_sponsorship(db_session, startup.id, other_founder)
    with pytest.raises(NotStartupOwner):
        sponsorships.cancel_sponsorship(db_session, startup.id, None)

    db_session.rollback()
    db_session.expire_all()
    startup = db_session.get(Startup, startup.id)
    after = (startup.is_sponsored, startup.sponsor_slot, as_utc(startup.sponsor_expires_at), startup.sponsor_duration_months)
    assert after == before


def test_cancel_releases_slot_and_keeps_counters(db_session, founder, make_sponsored):
    startup = make_sponsored(4, LATER, ad_views=9, ad_clicks=2)

    result = sponsorships.cancel_sponsorship(db_session, startup.id, founder)

    assert result.released_slot == 4
    assert result.success is True
    db_session.refresh(startup)
    assert startup.is_sponsored is False
    assert startup.sponsor_slot is None
    assert startup.sponsor_since is None
    assert startup.sponsor_expires_at is None
    assert (startup.ad_views, startup.ad_clicks) == (9, 2)
    audit = db_session.query(SponsorAudit).filter_by(startup_id=startup.id).one()
    assert audit.action == "Cancelled"
    assert audit.actor_id == founder.id


def test_cancel_unsponsored_startup_succeeds_quietly(db_session, founder, make_startup):
    startup = make_startup()

    result = sponsorships.cancel_sponsorship(db_session, startup.id, founder)

    assert result.released_slot is None
    assert db_session.query(SponsorAudit).filter_by(startup_id=startup.id).count() == 0


def test_sponsored_list_is_ordered_by_slot_and_capped(db_session, make_startup, make_sponsored):
    third = make_sponsored(3, LATER)
    first = make_sponsored(1, LATER)
    second = make_sponsored(2, LATER)
    make_startup()

    listed = sponsorships.list_sponsored_startups(db_session)
    assert [startup.id for startup in listed] == [first.id, second.id, third.id]
    assert [startup.id for startup in sponsorships.list_sponsored_startups(db_session, limit=2)] == [
        first.id,
        second.id,
    ]
    assert len(sponsorships.list_sponsored_startups(db_session, limit=500)) == 3


def test_availability_reports_occupied_slots(db_session, make_sponsored):
    make_sponsored(2, LATER)
    make_sponsored(7, LATER)

    availability = sponsorships.get_availability(db_session)

    assert availability.max_slots == 20
    assert availability.occupied == [2, 7]
    assert availability.available == 18
    assert sponsorships.has_free_slot(db_session) is True


def test_ad_counters_increment_atomically(db_session, make_sponsored):
    startup = make_sponsored(1, LATER)

    sponsorships.track_ad_view(db_session, startup.id)
    sponsorships.track_ad_view(db_session, startup.id)
    sponsorships.track_ad_click(db_session, startup.id)

    db_session.expire_all()
    startup = db_session.get(Startup, startup.id)
    assert (startup.ad_views, startup.ad_clicks) == (2, 1)
    with pytest.raises(StartupNotFound):
        sponsorships.track_ad_click(db_session, 4242)


def test_history_lists_lifecycle_newest_first(db_session, founder, other_founder, make_startup):
    startup = make_startup()
    sponsorships.assign_sponsor_slot(db_session, startup.id, 1, now=NOW)
    sponsorships.extend_sponsorship(db_session, startup.id, founder, 2, now=NOW)
    sponsorships.cancel_sponsorship(db_session, startup.id, founder)

    history = sponsorships.list_sponsor_history(db_session, startup.id, founder)

    assert [entry.action for entry in history] == ["Cancelled", "Extended", "Assigned"]
    with pytest.raises(NotStartupOwner):
        sponsorships.list_sponsor_history(db_session, startup.id, other_founder)
