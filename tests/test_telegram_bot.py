"""Tests for the Telegram shell: argument parsing, sessions and callbacks."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from hedgebot.engine.alert_actions import encode_callback
from hedgebot.engine.threshold_monitor import AlertUndeliverable, ThresholdMonitor
from hedgebot.models.position import TrackedPosition
from hedgebot.schemas.hedge import HedgeRequest, HedgeSuggestion, HedgeSuggestions
from hedgebot.services.telegram_bot import (
    RETRY_TEXT,
    SessionState,
    TelegramBot,
    format_position,
    format_suggestions,
    parse_alert_values,
    parse_hedge_args,
)


@pytest.fixture
def bot(store, catalog, notifier):
    bot = TelegramBot(token="test-token", store=store, client=catalog)
    bot.monitor = ThresholdMonitor(store, catalog, notifier=notifier)
    return bot


def _message_update(chat_id=42):
    return SimpleNamespace(
        effective_chat=SimpleNamespace(id=chat_id),
        effective_user=SimpleNamespace(username="alice"),
        message=SimpleNamespace(reply_text=AsyncMock(), text=""),
    )


def _callback_update(data, chat_id=42):
    query = SimpleNamespace(
        data=data,
        message=SimpleNamespace(chat=SimpleNamespace(id=chat_id)),
        answer=AsyncMock(),
        edit_message_text=AsyncMock(),
        edit_message_reply_markup=AsyncMock(),
    )
    return SimpleNamespace(callback_query=query)


# ---------------------------------------------------------------------------
# Parsing and formatting
# ---------------------------------------------------------------------------

def test_parse_hedge_args():
    request = parse_hedge_args(["btc", "50000", "2", "-10"])
    assert request == HedgeRequest(asset="BTC", purchase_price=50000, quantity=2, allowed_loss_percent=-10)


def test_parse_hedge_args_requires_sign():
    with pytest.raises(ValueError, match="with \\+ or -"):
        parse_hedge_args(["BTC", "50000", "2", "10"])


@pytest.mark.parametrize("args", [[], ["BTC", "50000", "2"], ["DOGE", "1", "1", "-5"], ["BTC", "x", "1", "-5"]])
def test_parse_hedge_args_rejects_bad_input(args):
    with pytest.raises(ValueError):
        parse_hedge_args(args)


def test_parse_alert_values_pads_missing():
    assert parse_alert_values(["95"]) == (95.0, 0.0, 0.0)
    assert parse_alert_values(["95", "5", "30"]) == (95.0, 5.0, 30.0)


@pytest.mark.parametrize("values", [[], ["a"], ["1", "2", "3", "4"], ["-1"]])
def test_parse_alert_values_rejects(values):
    with pytest.raises(ValueError):
        parse_alert_values(values)


def test_format_suggestions_lists_every_bucket():
    request = HedgeRequest(asset="BTC", purchase_price=50000, quantity=2, allowed_loss_percent=-10)
    suggestions = HedgeSuggestions(daily=[HedgeSuggestion(expiry="8JAN24", chosen_strike=44000, estimated_cost=840)])
    text = format_suggestions(request, suggestions)
    assert "Expiration: 8JAN24 (44000), Hedge: 840.00 $" in text
    assert "Hedge suggestions (Weekly):" in text
    assert text.count("No listed expiries.") == 2


def test_format_position_shows_alerts_and_prices():
    position = TrackedPosition(
        id="abc", user_handle="42", asset="BTC", expiry="26JAN24", strike=40000,
        reference_price=12.5, last_observed_price=11.0,
        alert_price_threshold=10.0, alert_time_window_minutes=30.0,
    )
    text = format_position(position)
    assert "<b>BTC-26JAN24-40000-P</b>" in text
    assert "Notification Price: 10.0 $" in text
    assert "Time Frame: 30 min" in text
    assert "Percent Change" not in text
    assert "Saved Price: 12.5 $" in text


# ---------------------------------------------------------------------------
# Commands and callbacks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_start_registers_user(bot, store):
    update = _message_update()
    await bot._cmd_start(update, SimpleNamespace(args=[]))
    assert store.find_user("42").username == "alice"
    update.message.reply_text.assert_awaited_once()


@pytest.mark.asyncio
async def test_hedge_command_opens_choice_session(bot):
    update = _message_update()
    await bot._cmd_hedge(update, SimpleNamespace(args=["BTC", "50000", "1", "-10"]))

    session = bot.session("42")
    assert session.state is SessionState.CHOOSING_SUGGESTIONS
    assert session.asset == "BTC"
    assert session.quantity == 1
    assert "Your data has been collected" in update.message.reply_text.await_args.args[0]


@pytest.mark.asyncio
async def test_hedge_command_usage_on_bad_args(bot):
    update = _message_update()
    await bot._cmd_hedge(update, SimpleNamespace(args=["BTC"]))
    assert "Usage: /hedge" in update.message.reply_text.await_args.args[0]
    assert bot.session("42").state is SessionState.IDLE


@pytest.mark.asyncio
async def test_save_callback_persists_chosen_suggestion(bot, store):
    session = bot.session("42")
    session.state = SessionState.CHOOSING_SUGGESTIONS
    session.asset = "BTC"
    session.quantity = 2
    session.suggestions = HedgeSuggestions(weekly=[
        HedgeSuggestion(expiry="12JAN24", chosen_strike=44000, estimated_cost=800),
        HedgeSuggestion(expiry="19JAN24", chosen_strike=44000, estimated_cost=900),
    ])

    update = _callback_update(encode_callback("save", "weekly", "1"))
    await bot._handle_callback(update, SimpleNamespace())

    (position,) = store.list_positions("42")
    assert position.expiry == "19JAN24"
    assert position.reference_price == 450.0


@pytest.mark.asyncio
async def test_save_callback_without_session_is_rejected(bot, store):
    update = _callback_update(encode_callback("save", "daily", "0"))
    await bot._handle_callback(update, SimpleNamespace())
    assert store.list_positions("42") is None
    assert "expired" in update.callback_query.answer.await_args.args[0]


@pytest.mark.asyncio
async def test_keep_callback_clears_pending(bot, store):
    p = store.push_position("42", TrackedPosition(
        user_handle="", asset="BTC", expiry="26JAN24", strike=40000, alert_price_threshold=100.0
    ))
    store.claim_alert("42", p.id)

    update = _callback_update(encode_callback("keep", p.id))
    await bot._handle_callback(update, SimpleNamespace())

    assert store.get_position("42", p.id).alert_pending is False
    update.callback_query.edit_message_reply_markup.assert_awaited_once()


@pytest.mark.asyncio
async def test_edit_flow_applies_typed_settings(bot, store):
    p = store.push_position("42", TrackedPosition(
        user_handle="", asset="BTC", expiry="26JAN24", strike=40000, alert_price_threshold=100.0
    ))
    store.claim_alert("42", p.id)

    await bot._handle_callback(_callback_update(encode_callback("edit", p.id)), SimpleNamespace())
    assert bot.session("42").state is SessionState.EDITING_ALERT

    update = _message_update()
    update.message.text = "80 5 15"
    await bot._handle_text(update, SimpleNamespace())

    fresh = store.get_position("42", p.id)
    assert (fresh.alert_price_threshold, fresh.alert_percent_change, fresh.alert_time_window_minutes) == (80, 5, 15)
    assert fresh.alert_pending is False
    assert bot.session("42").state is SessionState.IDLE


@pytest.mark.asyncio
async def test_unknown_callback_is_answered(bot):
    update = _callback_update("garbage")
    await bot._handle_callback(update, SimpleNamespace())
    update.callback_query.answer.assert_awaited_once()


# ---------------------------------------------------------------------------
# Alert delivery
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_send_alert_attaches_keyboard(bot):
    bot._app = MagicMock()
    bot._app.bot.send_message = AsyncMock()
    buttons = [("Keep", "keep:abc"), ("Remove", "rm_price:abc"), ("Edit", "edit:abc")]

    await bot.send_alert("42", "hello", buttons)

    kwargs = bot._app.bot.send_message.await_args.kwargs
    assert kwargs["chat_id"] == 42
    assert kwargs["text"] == "hello"
    rows = kwargs["reply_markup"].inline_keyboard
    assert [b.callback_data for row in rows for b in row] == ["keep:abc", "rm_price:abc", "edit:abc"]


@pytest.mark.asyncio
async def test_send_alert_before_start_raises(bot):
    with pytest.raises(RuntimeError):
        await bot.send_alert("42", "hello", [])


@pytest.mark.asyncio
async def test_send_alert_to_non_chat_handle_is_undeliverable(bot):
    bot._app = MagicMock()
    bot._app.bot.send_message = AsyncMock()
    buttons = [("Keep", "keep:abc"), ("Remove", "rm_price:abc"), ("Edit", "edit:abc")]

    with pytest.raises(AlertUndeliverable):
        await bot.send_alert("alice", "hello", buttons)
    bot._app.bot.send_message.assert_not_awaited()


# ---------------------------------------------------------------------------
# Store failures and unknown users
# ---------------------------------------------------------------------------

def _locked():
    return OperationalError("UPDATE tracked_position", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_positions_for_unregistered_user(bot):
    update = _message_update()
    await bot._cmd_positions(update, SimpleNamespace(args=[]))
    assert "/start" in update.message.reply_text.await_args.args[0]


@pytest.mark.asyncio
async def test_positions_for_user_without_positions(bot, store):
    store.ensure_user("42")
    update = _message_update()
    await bot._cmd_positions(update, SimpleNamespace(args=[]))
    assert update.message.reply_text.await_args.args[0] == "You have no favorite options tracked."


@pytest.mark.asyncio
async def test_positions_store_failure_replies_retry(bot, store):
    update = _message_update()
    with patch.object(store, "list_positions", side_effect=_locked()):
        await bot._cmd_positions(update, SimpleNamespace(args=[]))
    assert update.message.reply_text.await_args.args[0] == RETRY_TEXT


@pytest.mark.asyncio
async def test_remove_store_failure_replies_retry(bot, store):
    update = _message_update()
    with patch.object(store, "pull_position", side_effect=_locked()):
        await bot._cmd_remove(update, SimpleNamespace(args=["abc"]))
    assert update.message.reply_text.await_args.args[0] == RETRY_TEXT


@pytest.mark.asyncio
async def test_alert_command_store_failure_replies_retry(bot, store):
    update = _message_update()
    with patch.object(store, "update_position_fields", side_effect=_locked()):
        await bot._cmd_alert(update, SimpleNamespace(args=["abc", "90"]))
    assert update.message.reply_text.await_args.args[0] == RETRY_TEXT


@pytest.mark.asyncio
async def test_acknowledge_store_failure_answers_retry(bot, store):
    update = _callback_update(encode_callback("keep", "abc"))
    with patch.object(store, "update_position_fields", side_effect=_locked()):
        await bot._handle_callback(update, SimpleNamespace())
    update.callback_query.answer.assert_awaited_once_with(RETRY_TEXT)
    update.callback_query.edit_message_reply_markup.assert_not_awaited()
