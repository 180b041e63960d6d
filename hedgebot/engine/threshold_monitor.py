"""Threshold monitor: periodic re-pricing and one-shot alerts for tracked positions.

Two sweeps run on their own timers (see ``hedgebot.engine.scheduler``):

* price sweep: Put positions alert when the USD price falls to the threshold,
  Call positions when it rises to it.
* percent-change sweep: drift against an in-memory baseline, either on every
  tick or once per time window.

A fired alert sets ``alert_pending`` through a conditional update, which
silences both sweeps for that position until the user acknowledges it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol

from hedgebot.config import settings
from hedgebot.engine.alert_actions import AlertCommand, alert_buttons
from hedgebot.models.alert_log import AlertLog
from hedgebot.models.position import OptionKind, TrackedPosition
from hedgebot.services.deribit_client import VenueError
from hedgebot.services.position_store import PositionStore
from hedgebot.utils.constants import (
    ACTION_EDIT,
    ACTION_KEEP,
    ACTION_REMOVE_CHANGE,
    ACTION_REMOVE_PRICE,
)

logger = logging.getLogger(__name__)

_monitor_instance: Optional["ThresholdMonitor"] = None


class AlertUndeliverable(Exception):
    """The recipient can never be reached on this channel; retrying will not help."""


class Notifier(Protocol):
    async def send_alert(self, user_handle: str, text: str, buttons: list[tuple[str, str]]) -> None:
        ...


class LogNotifier:
    """Notifier used when no messaging channel is configured."""

    async def send_alert(self, user_handle: str, text: str, buttons: list[tuple[str, str]]) -> None:
        logger.warning(f"[alert -> {user_handle}] {text}")


@dataclass
class Baseline:
    price: float
    timestamp: float  # seconds, from the monitor's clock


class BaselineCache:
    """Percent-change baselines keyed by position id.

    Process-local and never persisted. An entry is dropped when its window
    completes (and immediately reseeded), when an alert fires, when the alert
    is acknowledged, and when the position is deleted or no longer armed.
    """

    def __init__(self):
        self._entries: dict[str, Baseline] = {}

    def get(self, position_id: str) -> Baseline | None:
        return self._entries.get(position_id)

    def seed(self, position_id: str, price: float, timestamp: float):
        self._entries[position_id] = Baseline(price=price, timestamp=timestamp)

    def evict(self, position_id: str):
        self._entries.pop(position_id, None)

    def retain(self, position_ids: Iterable[str]):
        keep = set(position_ids)
        for stale in [pid for pid in self._entries if pid not in keep]:
            del self._entries[stale]

    def __contains__(self, position_id: str) -> bool:
        return position_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class SweepStats:
    checked: int = 0
    skipped: int = 0
    fired: int = 0
    errors: int = 0


def price_condition_met(option_kind: OptionKind, price: float, threshold: float) -> bool:
    if threshold <= 0:
        return False
    if OptionKind(option_kind) is OptionKind.PUT:
        return price <= threshold
    return price >= threshold


def percent_change(baseline_price: float, current_price: float) -> float:
    return (current_price - baseline_price) / baseline_price * 100


_CHOICES_TEXT = (
    "<b>Choose one of the following options:</b>\n"
    '"<b>Keep</b>" • Keep the current settings.\n'
    '"<b>Remove</b>" • Remove the notification settings.\n'
    '"<b>Edit</b>" • Edit the notification settings.'
)


def _price_alert_text(position: TrackedPosition, price: float) -> str:
    return (
        f"<b>{position.instrument_name}</b> reached the notification price of "
        f"<b>${price:.2f}</b>.\n\n" + _CHOICES_TEXT
    )


def _percent_alert_text(position: TrackedPosition, pct: float) -> str:
    direction = "increased" if pct > 0 else "decreased"
    return (
        f"<b>{position.instrument_name}</b> {direction} by <b>{abs(pct):.2f}%</b>.\n\n"
        + _CHOICES_TEXT
    )


class ThresholdMonitor:
    """Evaluates alert conditions for every armed position."""

    def __init__(
        self,
        store: PositionStore,
        client,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
        default_sensitivity: float | None = None,
    ):
        self.store = store
        self.client = client
        self.notifier = notifier or LogNotifier()
        self.clock = clock
        self.default_sensitivity = (
            default_sensitivity if default_sensitivity is not None
            else settings.default_percent_sensitivity
        )
        self.baselines = BaselineCache()

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    async def _usd_price(self, position: TrackedPosition, spot_cache: dict[str, float]) -> float:
        """Current USD price; 0.0 when the option has no live ask."""
        ask = await self.client.ask_price(position.instrument_name)
        if not ask or ask <= 0:
            return 0.0
        spot = spot_cache.get(position.asset)
        if spot is None:
            spot = await self.client.spot_price(position.asset)
            spot_cache[position.asset] = spot
        return ask * spot

    def _observe(self, position: TrackedPosition, price: float):
        self.store.update_position_fields(
            position.user_handle, position.id, last_observed_price=round(price, 2)
        )

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def _fire(
        self,
        position: TrackedPosition,
        kind: str,
        text: str,
        remove_action: str,
        price: float,
        pct: float | None = None,
    ) -> bool:
        """Claim the pending flag, then send exactly one notification."""
        if not self.store.claim_alert(position.user_handle, position.id):
            logger.info(f"Alert for {position.instrument_name} ({position.id}) already pending")
            return False

        self.baselines.evict(position.id)
        try:
            await self.notifier.send_alert(
                position.user_handle, text, alert_buttons(position.id, remove_action)
            )
        except AlertUndeliverable as e:
            # Left pending: both sweeps stay quiet until the alert is acknowledged through the API
            logger.warning(f"Alert for {position.id} cannot be delivered to {position.user_handle}: {e}")
            return False
        except Exception as e:
            # Release the claim so the next tick can retry delivery
            logger.error(f"Failed to deliver {kind} alert for {position.id}: {e}")
            self.store.update_position_fields(position.user_handle, position.id, alert_pending=False)
            return False

        self.store.record_alert(AlertLog(
            position_id=position.id,
            user_handle=position.user_handle,
            kind=kind,
            observed_price=round(price, 2),
            percent_change=round(pct, 2) if pct is not None else None,
            message=text,
        ))
        logger.info(f"Fired {kind} alert for {position.instrument_name} to {position.user_handle}")
        return True

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def check_price_thresholds(self) -> SweepStats:
        """One price-threshold sweep over all armed positions."""
        stats = SweepStats()
        try:
            positions = [p for p in self.store.list_armed_positions() if p.alert_price_threshold > 0]
        except Exception as e:
            logger.error(f"Price sweep could not load positions: {e}", exc_info=True)
            stats.errors += 1
            return stats

        spot_cache: dict[str, float] = {}
        for position in positions:
            stats.checked += 1
            try:
                price = await self._usd_price(position, spot_cache)
                if price <= 0:
                    logger.debug(f"No price for {position.instrument_name}; skipping")
                    stats.skipped += 1
                    continue

                self._observe(position, price)
                if price_condition_met(position.option_kind, price, position.alert_price_threshold):
                    fired = await self._fire(
                        position, "price", _price_alert_text(position, price),
                        ACTION_REMOVE_PRICE, price,
                    )
                    stats.fired += int(fired)
            except VenueError as e:
                logger.warning(f"Price check for {position.instrument_name} failed: {e}")
                stats.errors += 1
            except Exception as e:
                logger.error(f"Price check for {position.id} crashed: {e}", exc_info=True)
                stats.errors += 1

        if stats.fired or stats.errors:
            logger.info(f"Price sweep: {stats}")
        return stats

    async def check_percent_changes(self) -> SweepStats:
        """One percent-change sweep over all armed positions."""
        stats = SweepStats()
        try:
            armed = self.store.list_armed_positions()
        except Exception as e:
            logger.error(f"Percent sweep could not load positions: {e}", exc_info=True)
            stats.errors += 1
            return stats

        positions = [p for p in armed if p.has_percent_alert]
        # Deleted, disarmed and pending positions lose their baseline
        self.baselines.retain(p.id for p in positions)

        spot_cache: dict[str, float] = {}
        for position in positions:
            stats.checked += 1
            try:
                price = await self._usd_price(position, spot_cache)
                if price <= 0:
                    logger.debug(f"No price for {position.instrument_name}; skipping")
                    stats.skipped += 1
                    continue

                self._observe(position, price)
                fired = await self._evaluate_percent_change(position, price)
                stats.fired += int(fired)
            except VenueError as e:
                logger.warning(f"Percent check for {position.instrument_name} failed: {e}")
                stats.errors += 1
            except Exception as e:
                logger.error(f"Percent check for {position.id} crashed: {e}", exc_info=True)
                stats.errors += 1

        if stats.fired or stats.errors:
            logger.info(f"Percent sweep: {stats}")
        return stats

    async def _evaluate_percent_change(self, position: TrackedPosition, price: float) -> bool:
        now = self.clock()
        baseline = self.baselines.get(position.id)
        if baseline is None:
            # First observation only seeds
            self.baselines.seed(position.id, price, now)
            return False

        pct = percent_change(baseline.price, price)
        window = position.alert_time_window_minutes

        if window > 0:
            elapsed_minutes = (now - baseline.timestamp) / 60
            if elapsed_minutes < window:
                return False
            self.baselines.seed(position.id, price, now)
            threshold = position.alert_percent_change or self.default_sensitivity
        else:
            threshold = position.alert_percent_change

        if abs(pct) < threshold:
            return False
        return await self._fire(
            position, "percent_change", _percent_alert_text(position, pct),
            ACTION_REMOVE_CHANGE, price, pct=pct,
        )

    async def refresh_last_prices(self, user_handle: str) -> int | None:
        """Reprice every position of one user. Returns how many were updated, None if unknown user.

        Unpriceable positions keep their previous ``last_observed_price``.
        """
        positions = self.store.list_positions(user_handle)
        if positions is None:
            return None

        updated = 0
        spot_cache: dict[str, float] = {}
        for position in positions:
            try:
                price = await self._usd_price(position, spot_cache)
                if price > 0:
                    self._observe(position, price)
                    updated += 1
            except VenueError as e:
                logger.warning(f"Repricing {position.instrument_name} failed: {e}")
            except Exception as e:
                logger.error(f"Repricing {position.id} crashed: {e}", exc_info=True)
        return updated

    # ------------------------------------------------------------------
    # Acknowledgments
    # ------------------------------------------------------------------

    def keep_alert(self, user_handle: str, position_id: str) -> bool:
        """Keep thresholds armed; the baseline reseeds on the next tick."""
        self.baselines.evict(position_id)
        return self.store.update_position_fields(user_handle, position_id, alert_pending=False)

    def remove_price_alert(self, user_handle: str, position_id: str) -> bool:
        return self.store.update_position_fields(
            user_handle, position_id, alert_price_threshold=0.0, alert_pending=False
        )

    def remove_change_alert(self, user_handle: str, position_id: str) -> bool:
        self.baselines.evict(position_id)
        return self.store.update_position_fields(
            user_handle, position_id,
            alert_percent_change=0.0, alert_time_window_minutes=0.0, alert_pending=False,
        )

    def begin_edit(self, user_handle: str, position_id: str) -> bool:
        """Clear the pending flag before the user re-enters alert settings."""
        self.baselines.evict(position_id)
        return self.store.update_position_fields(user_handle, position_id, alert_pending=False)

    def configure_alerts(
        self,
        user_handle: str,
        position_id: str,
        price_threshold: float | None = None,
        percent_change: float | None = None,
        time_window_minutes: float | None = None,
    ) -> bool:
        """Write new alert settings; unspecified fields keep their value."""
        fields: dict = {"alert_pending": False}
        for name, value in (
            ("alert_price_threshold", price_threshold),
            ("alert_percent_change", percent_change),
            ("alert_time_window_minutes", time_window_minutes),
        ):
            if value is None:
                continue
            if value < 0:
                raise ValueError(f"{name} must be >= 0")
            fields[name] = float(value)

        self.baselines.evict(position_id)
        return self.store.update_position_fields(user_handle, position_id, **fields)

    def remove_position(self, user_handle: str, position_id: str) -> bool:
        self.baselines.evict(position_id)
        return self.store.pull_position(user_handle, position_id)

    def acknowledge(self, user_handle: str, command: AlertCommand) -> bool:
        """Apply a decoded alert-message action. False if the position was not found."""
        handlers = {
            ACTION_KEEP: self.keep_alert,
            ACTION_REMOVE_PRICE: self.remove_price_alert,
            ACTION_REMOVE_CHANGE: self.remove_change_alert,
            ACTION_EDIT: self.begin_edit,
        }
        handler = handlers.get(command.action)
        if handler is None:
            raise ValueError(f"Not an acknowledgment action: {command.action}")
        return handler(user_handle, command.position_id)


def init_monitor(store: PositionStore, client, notifier: Notifier | None = None) -> ThresholdMonitor:
    """Initialize and return the monitor singleton."""
    global _monitor_instance
    _monitor_instance = ThresholdMonitor(store=store, client=client, notifier=notifier)
    return _monitor_instance


def get_monitor() -> Optional[ThresholdMonitor]:
    """Get the monitor singleton, or None if not initialized."""
    return _monitor_instance
