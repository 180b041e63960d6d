"""Telegram bot: hedge suggestions, tracked positions and alert delivery."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import ValidationError
from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from hedgebot.config import settings
from hedgebot.engine.alert_actions import ACK_ACTIONS, decode_callback, encode_callback
from hedgebot.engine.threshold_monitor import AlertUndeliverable
from hedgebot.models.position import TrackedPosition
from hedgebot.schemas.hedge import HedgeRequest, HedgeSuggestions
from hedgebot.services.deribit_client import format_strike
from hedgebot.services.hedge_engine import run_hedge_suggestion
from hedgebot.services.position_store import PositionStore
from hedgebot.services.tracking import save_suggestions
from hedgebot.utils.constants import ACTION_EDIT, ACTION_SAVE_SUGGESTION

logger = logging.getLogger(__name__)

_bot_instance: Optional["TelegramBot"] = None

HEDGE_USAGE = "Usage: /hedge <BTC|ETH> <purchase price> <quantity> <+/-allowed loss %>\nExample: /hedge BTC 50000 2 -10"
ALERT_USAGE = "Usage: /alert <position id> <price> [percent change] [time frame, min]"
RETRY_TEXT = "Something went wrong. Please try again later."
BUCKETS = ("daily", "weekly", "monthly")


class SessionState(str, Enum):
    IDLE = "idle"
    CHOOSING_SUGGESTIONS = "choosing_suggestions"
    EDITING_ALERT = "editing_alert"


@dataclass
class ChatSession:
    """Per-user conversation state for multi-step flows."""

    user_handle: str
    state: SessionState = SessionState.IDLE
    asset: str | None = None
    quantity: float | None = None
    suggestions: HedgeSuggestions | None = None
    editing_position_id: str | None = None

    def reset(self):
        self.state = SessionState.IDLE
        self.asset = None
        self.quantity = None
        self.suggestions = None
        self.editing_position_id = None


# ---------------------------------------------------------------------------
# Parsing and formatting helpers
# ---------------------------------------------------------------------------

def parse_hedge_args(args: list[str]) -> HedgeRequest:
    """Build a HedgeRequest from ``/hedge`` arguments. Raises ValueError with a user message."""
    if len(args) != 4:
        raise ValueError(HEDGE_USAGE)
    asset, price, quantity, loss = args
    if not loss.startswith(("+", "-")):
        raise ValueError("Please enter the allowed loss with + or - before the percentage (e.g., +10, -5).")
    try:
        return HedgeRequest(
            asset=asset,
            purchase_price=float(price),
            quantity=float(quantity),
            allowed_loss_percent=float(loss),
        )
    except (ValueError, ValidationError):
        raise ValueError(HEDGE_USAGE) from None


def parse_alert_values(values: list[str]) -> tuple[float, float, float]:
    """``<price> [percent] [window]`` → numbers, missing ones as 0."""
    if not 1 <= len(values) <= 3:
        raise ValueError(ALERT_USAGE)
    try:
        numbers = [float(v) for v in values]
    except ValueError:
        raise ValueError(ALERT_USAGE) from None
    if any(n < 0 for n in numbers):
        raise ValueError("Alert values must not be negative.")
    numbers += [0.0] * (3 - len(numbers))
    return numbers[0], numbers[1], numbers[2]


def format_suggestions(request: HedgeRequest, suggestions: HedgeSuggestions) -> str:
    lines = [
        "Your data has been collected:",
        "",
        f"Asset: {request.asset}",
        f"Purchase price: {request.purchase_price} $",
        f"Quantity: {request.quantity} {request.asset}",
        f"Allowed loss (%): {request.allowed_loss_percent}%",
    ]
    for bucket in BUCKETS:
        items = getattr(suggestions, bucket)
        lines += ["", f"<b>Hedge suggestions ({bucket.capitalize()}):</b>"]
        if not items:
            lines.append("No listed expiries.")
        for s in items:
            lines.append(
                f"Expiration: {s.expiry} ({format_strike(s.chosen_strike)}), "
                f"Hedge: {s.estimated_cost:.2f} $"
            )
    return "\n".join(lines)


def format_position(position: TrackedPosition) -> str:
    lines = [f"<b>{position.instrument_name}</b>", f"ID: <code>{position.id}</code>"]
    if position.is_alert_active:
        lines.append("<b>Notification settings:</b>")
        if position.alert_price_threshold > 0:
            lines.append(f"Notification Price: {position.alert_price_threshold} $")
        if position.alert_percent_change > 0:
            lines.append(f"Percent Change: {position.alert_percent_change} %")
        if position.alert_time_window_minutes > 0:
            lines.append(f"Time Frame: {position.alert_time_window_minutes:g} min")
    if position.reference_price > 0:
        lines.append(f"Saved Price: {position.reference_price} $")
    if position.last_observed_price > 0:
        lines.append(f"Option Price: <b>{position.last_observed_price} $</b>")
    return "\n".join(lines)


def _suggestion_keyboard(suggestions: HedgeSuggestions) -> InlineKeyboardMarkup:
    rows = []
    for bucket in BUCKETS:
        for idx, s in enumerate(getattr(suggestions, bucket)):
            label = f"Save {s.expiry} ({format_strike(s.chosen_strike)})"
            rows.append([InlineKeyboardButton(
                label, callback_data=encode_callback(ACTION_SAVE_SUGGESTION, bucket, str(idx))
            )])
    return InlineKeyboardMarkup(rows)


class TelegramBot:
    """Telegram bot sharing the application's event loop."""

    def __init__(self, token: str, store: PositionStore, client, monitor=None):
        self.token = token
        self.store = store
        self.client = client
        self.monitor = monitor
        self._app: Optional[Application] = None
        self._sessions: dict[str, ChatSession] = {}

    def session(self, user_handle: str) -> ChatSession:
        session = self._sessions.get(user_handle)
        if session is None:
            session = ChatSession(user_handle=user_handle)
            self._sessions[user_handle] = session
        return session

    @staticmethod
    def _handle_of(update: Update) -> str:
        return str(update.effective_chat.id)

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        user = update.effective_user
        handle = self._handle_of(update)
        try:
            self.store.ensure_user(handle, username=(user.username or "") if user else "")
        except Exception as e:
            logger.error(f"Failed to register user {handle}: {e}", exc_info=True)
            await update.message.reply_text(RETRY_TEXT)
            return
        self.session(handle).reset()
        await update.message.reply_text(
            "Welcome! This bot suggests protective puts and watches your options.\n\n"
            "/hedge <asset> <price> <qty> <+/-loss %>: hedge suggestions\n"
            "/positions: tracked options\n"
            "/alert <id> <price> [percent] [minutes]: configure alerts\n"
            "/remove <id>: stop tracking an option"
        )

    async def _cmd_hedge(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        handle = self._handle_of(update)
        try:
            request = parse_hedge_args(context.args or [])
        except ValueError as e:
            await update.message.reply_text(str(e))
            return

        result = await run_hedge_suggestion(
            self.client,
            request.asset,
            request.purchase_price,
            request.quantity,
            request.allowed_loss_percent,
        )
        if not result.success:
            await update.message.reply_text(
                "There was an error calculating the hedge suggestions. Please try again later."
            )
            return

        session = self.session(handle)
        session.reset()
        session.state = SessionState.CHOOSING_SUGGESTIONS
        session.asset = request.asset
        session.quantity = request.quantity
        session.suggestions = result.suggestions

        await update.message.reply_text(
            format_suggestions(request, result.suggestions),
            parse_mode=ParseMode.HTML,
            reply_markup=_suggestion_keyboard(result.suggestions),
        )

    async def _cmd_positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        handle = self._handle_of(update)
        try:
            await self.monitor.refresh_last_prices(handle)
            positions = self.store.list_positions(handle)
        except Exception as e:
            logger.error(f"Failed to list positions for {handle}: {e}", exc_info=True)
            await update.message.reply_text(RETRY_TEXT)
            return

        if positions is None:
            await update.message.reply_text("You are not registered yet. Send /start first.")
            return
        if not positions:
            await update.message.reply_text("You have no favorite options tracked.")
            return
        text = "\n\n====================\n\n".join(format_position(p) for p in positions)
        await update.message.reply_text(text, parse_mode=ParseMode.HTML)

    async def _cmd_alert(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        handle = self._handle_of(update)
        args = context.args or []
        if len(args) < 2:
            await update.message.reply_text(ALERT_USAGE)
            return
        try:
            price, pct, window = parse_alert_values(args[1:])
        except ValueError as e:
            await update.message.reply_text(str(e))
            return
        await self._apply_alert_config(update, handle, args[0], price, pct, window)

    async def _cmd_remove(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        handle = self._handle_of(update)
        if not context.args:
            await update.message.reply_text("Usage: /remove <position id>")
            return
        try:
            removed = self.monitor.remove_position(handle, context.args[0])
        except Exception as e:
            logger.error(f"Failed to remove position for {handle}: {e}", exc_info=True)
            await update.message.reply_text(RETRY_TEXT)
            return
        await update.message.reply_text("Option removed." if removed else "Option not found.")

    async def _handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        handle = self._handle_of(update)
        session = self.session(handle)
        if session.state is not SessionState.EDITING_ALERT:
            return
        try:
            price, pct, window = parse_alert_values(update.message.text.split())
        except ValueError as e:
            await update.message.reply_text(str(e))
            return
        position_id = session.editing_position_id
        session.reset()
        await self._apply_alert_config(update, handle, position_id, price, pct, window)

    async def _apply_alert_config(self, update: Update, handle: str, position_id: str,
                                  price: float, pct: float, window: float):
        try:
            ok = self.monitor.configure_alerts(
                handle, position_id,
                price_threshold=price, percent_change=pct, time_window_minutes=window,
            )
            position = self.store.get_position(handle, position_id) if ok else None
        except Exception as e:
            logger.error(f"Failed to configure alerts for {position_id}: {e}", exc_info=True)
            await update.message.reply_text(RETRY_TEXT)
            return
        if position is None:
            await update.message.reply_text("Option not found.")
            return
        await update.message.reply_text(format_position(position), parse_mode=ParseMode.HTML)

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.message:
            return
        handle = str(query.message.chat.id)
        command = decode_callback(query.data or "")
        if command is None:
            logger.info(f"Unhandled callback data: {query.data}")
            await query.answer()
            return

        if command.action == ACTION_SAVE_SUGGESTION:
            await self._save_suggestion(query, handle, command.position_id, command.value)
            return

        if command.action in ACK_ACTIONS:
            try:
                found = self.monitor.acknowledge(handle, command)
            except Exception as e:
                logger.error(f"Failed to apply {command.action} for {command.position_id}: {e}", exc_info=True)
                await query.answer(RETRY_TEXT)
                return
            if not found:
                await query.answer("Option not found.")
                return
            if command.action == ACTION_EDIT:
                session = self.session(handle)
                session.reset()
                session.state = SessionState.EDITING_ALERT
                session.editing_position_id = command.position_id
                await query.answer()
                await query.edit_message_text(
                    "Enter new settings: <price> [percent change] [time frame, min]"
                )
                return
            await query.answer("Notification settings updated.")
            await query.edit_message_reply_markup(reply_markup=None)

    async def _save_suggestion(self, query, handle: str, bucket: str, index: str | None):
        session = self.session(handle)
        if session.state is not SessionState.CHOOSING_SUGGESTIONS or session.suggestions is None:
            await query.answer("These suggestions have expired. Run /hedge again.")
            return
        try:
            suggestion = getattr(session.suggestions, bucket)[int(index)]
        except (AttributeError, IndexError, TypeError, ValueError):
            await query.answer("Unknown suggestion.")
            return

        try:
            save_suggestions(self.store, handle, session.asset, session.quantity, [suggestion])
        except Exception as e:
            logger.error(f"Failed to save suggestion for {handle}: {e}", exc_info=True)
            await query.answer("Error saving options. Please try again later.")
            return
        await query.answer(f"Saved {suggestion.expiry} put.")

    async def send_alert(self, user_handle: str, text: str, buttons: list[tuple[str, str]]):
        """Deliver an alert with its action buttons. Raises if Telegram rejects it.

        Handles that are not chat ids (users created through the API) raise
        ``AlertUndeliverable`` so the monitor does not retry every tick.
        """
        if not self._app or not self._app.bot:
            raise RuntimeError("Telegram bot is not running")
        try:
            chat_id = int(user_handle)
        except ValueError:
            raise AlertUndeliverable(f"{user_handle!r} is not a Telegram chat id") from None
        keep, remove, edit = (InlineKeyboardButton(label, callback_data=data) for label, data in buttons)
        await self._app.bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=ParseMode.HTML,
            reply_markup=InlineKeyboardMarkup([[keep, remove], [edit]]),
        )

    async def start(self):
        """Start polling on the running event loop."""
        self._app = Application.builder().token(self.token).build()

        self._app.add_handler(CommandHandler("start", self._cmd_start))
        self._app.add_handler(CommandHandler("hedge", self._cmd_hedge))
        self._app.add_handler(CommandHandler("positions", self._cmd_positions))
        self._app.add_handler(CommandHandler("alert", self._cmd_alert))
        self._app.add_handler(CommandHandler("remove", self._cmd_remove))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))
        self._app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_text))

        logger.info("Telegram bot starting...")
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling()

    async def stop(self):
        if self._app:
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            logger.info("Telegram bot stopped")


def init_bot(store: PositionStore, client) -> TelegramBot:
    """Initialize and return the bot singleton."""
    global _bot_instance
    _bot_instance = TelegramBot(token=settings.telegram_bot_token, store=store, client=client)
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    """Get the bot singleton, or None if not initialized."""
    return _bot_instance
