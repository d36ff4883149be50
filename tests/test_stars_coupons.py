from __future__ import annotations

import pytest

from together import repositories
from together.errors import CallableError
from together.services import couple, partners, stars


@pytest.fixture
async def couple_linked(alice, bob):
    await partners.link_partner_by_email(alice, "bob@example.com")
    return alice, bob


async def test_redeem_coupon_spends_stars(couple_linked):
    alice, bob = couple_linked
    coupon = await couple.create_coupon(alice, {"title": "Breakfast in bed", "star_cost": 4})
    assert coupon["for_user"] == "bob"
    await stars.award_stars(alice, "bob", 10)

    result = await stars.redeem_coupon(bob, coupon["id"])

    assert result == {"success": True, "balance": 6}
    assert await stars.get_balance("bob") == 6
    stored = await repositories.get_coupon(coupon["id"])
    assert stored["used"] is True
    assert stored["redeemed_at"]
    entries = await repositories.list_ledger("bob")
    redeem = [item for item in entries if item["type"] == "REDEEM_COUPON"]
    assert len(redeem) == 1
    assert redeem[0]["amount"] == -4
    assert redeem[0]["coupon_id"] == coupon["id"]

    with pytest.raises(CallableError) as excinfo:
        await stars.redeem_coupon(bob, coupon["id"])
    assert excinfo.value.code == "failed-precondition"
    assert await stars.get_balance("bob") == 6


async def test_redeem_requires_balance_and_recipient(couple_linked):
    alice, bob = couple_linked
    coupon = await couple.create_coupon(alice, {"title": "Movie night"})
    assert coupon["star_cost"] == 5

    with pytest.raises(CallableError) as excinfo:
        await stars.redeem_coupon(alice, coupon["id"])
    assert excinfo.value.code == "permission-denied"

    with pytest.raises(CallableError) as excinfo:
        await stars.redeem_coupon(bob, coupon["id"])
    assert excinfo.value.code == "failed-precondition"
    assert (await repositories.get_coupon(coupon["id"]))["used"] is False
    assert await repositories.count_ledger_entries() == 0


async def test_coupons_need_a_partner(alice):
    with pytest.raises(CallableError) as excinfo:
        await couple.create_coupon(alice, {"title": "Massage"})
    assert excinfo.value.code == "failed-precondition"


async def test_only_creator_deletes_coupon(couple_linked):
    alice, bob = couple_linked
    coupon = await couple.create_coupon(alice, {"title": "Dishes"})
    with pytest.raises(CallableError):
        await couple.delete_coupon(bob, coupon["id"])
    await couple.delete_coupon(alice, coupon["id"])
    assert await repositories.get_coupon(coupon["id"]) is None


async def test_ledger_summary(couple_linked):
    alice, bob = couple_linked
    await stars.award_stars(alice, "bob", 3)
    await stars.award_stars(alice, "bob", 7)
    await stars.award_stars(bob, "alice", 2)

    summary = stars.summarize_ledger("alice", await repositories.list_ledger("alice"))

    assert summary == {"total_awarded": 10, "total_received": 2, "largest_award": 2, "count": 3}


def test_validate_award_amount_bounds(monkeypatch):
    monkeypatch.setenv("MAX_STAR_AWARD", "5")
    from together.settings import reset_settings

    reset_settings()
    assert stars.validate_award_amount(5) == 5
    for bad in (0, -1, 6, 2.0, True):
        with pytest.raises(CallableError):
            stars.validate_award_amount(bad)
