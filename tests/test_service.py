import asyncio
from decimal import Decimal

import pytest

from solalertbot.service import AlertNotFound, AlertValidationError

from conftest import T1, T2, add_alert


async def test_create_alert_snapshots_and_claims_slot(service, user, stream):
    alert = await service.create_alert(user.id, T1, "market_cap", "2.5m", "above", "email")
    assert alert.threshold_value == Decimal("2500000")
    assert alert.circulating_supply == Decimal("1000000.0")
    assert alert.market_cap == Decimal("1000000.0")
    assert (alert.is_active, alert.is_triggered) == (True, False)
    assert stream.current_token == T1


@pytest.mark.parametrize("token,kind,value,comparison,channel", [
    ("bad-address", "price", "1", "above", "email"),
    (T1, "volume", "1", "above", "email"),
    (T1, "price", "1", "sideways", "email"),
    (T1, "price", "1", "above", "sms"),
    (T1, "price", "-1", "above", "email"),
    (T1, "price", "0", "above", "email"),
    (T1, "price", "many", "above", "email"),
])
async def test_create_alert_rejects_bad_input(service, user, token, kind, value, comparison, channel):
    with pytest.raises(AlertValidationError):
        await service.create_alert(user.id, token, kind, value, comparison, channel)


async def test_create_alert_rejects_unknown_token(service, user, gateway):
    gateway.data[T2] = None
    with pytest.raises(AlertValidationError):
        await service.create_alert(user.id, T2, "price", "1", "above", "email")


async def test_create_alert_needs_channel_recipient(service):
    user = await service.register_user("Wa11etNoEmai1" + "2" * 31, telegram_chat_id="55")
    with pytest.raises(AlertValidationError):
        await service.create_alert(user.id, T1, "price", "1", "above", "email")
    alert = await service.create_alert(user.id, T1, "price", "1", "above", "telegram")
    assert alert.channel == "telegram"


async def test_unknown_ids_raise(service):
    with pytest.raises(AlertNotFound):
        await service.deactivate_alert("missing")
    with pytest.raises(AlertNotFound):
        await service.delete_alert("missing")
    with pytest.raises(AlertNotFound):
        await service.test_alert("missing")


async def test_deactivate_is_not_a_trigger(service, db, user):
    alert = await add_alert(db, user, T1)
    row = await service.deactivate_alert(alert.id)
    assert not row.is_active
    assert not row.is_triggered
    assert row.cleared_at is not None


async def test_delete_alert_moves_stream(service, db, user, stream):
    a = await add_alert(db, user, T1, minutes=0)
    await add_alert(db, user, T2, minutes=1)
    await service.selector.on_alert_created(T1)
    await service.delete_alert(a.id)
    assert stream.current_token == T2
    assert (await service.get_monitoring_stats())["total"] == 1


async def test_status_and_stats(service, db, user, gateway, stream):
    await add_alert(db, user, T1, value="0.5", minutes=0)
    await add_alert(db, user, T1, value="50", minutes=1)
    await add_alert(db, user, T2, value="50", minutes=2)
    await service.selector.on_alert_created(T1)

    status = await service.get_monitoring_status()
    assert status == {"active_alert_count": 3, "unique_token_count": 2,
                      "currently_subscribed_token": T1, "stream_connected": True}

    await service.force_check()
    stats = await service.get_monitoring_stats()
    assert (stats["total"], stats["active"], stats["triggered"], stats["unique_tokens"]) == (3, 2, 1, 2)
    assert stats["last_check_time"] is not None


async def test_register_user_updates_existing(service):
    first = await service.register_user("Wa11etSame" + "3" * 34, email="a@example.com")
    second = await service.register_user("Wa11etSame" + "3" * 34, telegram_chat_id="77")
    assert first.id == second.id
    assert (second.email, second.telegram_chat_id) == ("a@example.com", "77")


async def test_start_resumes_and_stop_is_clean(service, db, user, stream, senders):
    await add_alert(db, user, T2, minutes=0)
    await service.start()
    await asyncio.sleep(0)
    assert stream.current_token == T2
    await service.stop()
    assert stream.current_token is None
    assert service._tasks == []


async def test_stop_closes_stream_before_draining_handlers(service, stream):
    await service.start()
    await service.stop()
    assert stream.lifecycle == ["stop", "drain"]
