"""Persistence for users and their tracked positions.

Every mutation of an existing position is a field-level ``UPDATE`` keyed by
``(user_handle, position_id)`` so that the two monitor sweeps and the chat
shell never overwrite each other's columns. Lookups that find nothing return
``None``; a known user without positions gets an empty list.
"""

import logging

from sqlalchemy import or_, update
from sqlmodel import Session, select

from hedgebot.models.alert_log import AlertLog
from hedgebot.models.position import TrackedPosition
from hedgebot.models.user import TraderUser

logger = logging.getLogger(__name__)

# Columns that may change after creation; instrument identity never does
MUTABLE_FIELDS = frozenset({
    "last_observed_price",
    "alert_price_threshold",
    "alert_percent_change",
    "alert_time_window_minutes",
    "alert_pending",
})


class PositionStore:
    """Document-style access to users and positions on top of SQLModel."""

    def __init__(self, db_engine=None):
        if db_engine is None:
            from hedgebot.database import engine as db_engine
        self.engine = db_engine

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user(self, user_handle: str) -> TraderUser | None:
        with Session(self.engine) as session:
            return session.exec(
                select(TraderUser).where(TraderUser.user_handle == user_handle)
            ).first()

    def ensure_user(self, user_handle: str, username: str = "") -> TraderUser:
        """Return the user, creating it on first contact."""
        with Session(self.engine) as session:
            user = session.exec(
                select(TraderUser).where(TraderUser.user_handle == user_handle)
            ).first()
            if user is None:
                user = TraderUser(user_handle=user_handle, username=username)
                session.add(user)
                session.commit()
                session.refresh(user)
                logger.info(f"Created user {user_handle} ({username or 'no username'})")
            return user

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def list_positions(self, user_handle: str) -> list[TrackedPosition] | None:
        """A user's positions in creation order, or None if the user is unknown."""
        with Session(self.engine) as session:
            user = session.exec(
                select(TraderUser).where(TraderUser.user_handle == user_handle)
            ).first()
            if user is None:
                return None
            return list(session.exec(
                select(TrackedPosition)
                .where(TrackedPosition.user_handle == user_handle)
                .order_by(TrackedPosition.created_at)
            ).all())

    def list_alert_positions(self, user_handle: str) -> list[TrackedPosition] | None:
        """Positions with at least one alert field set, or None if the user is unknown."""
        positions = self.list_positions(user_handle)
        if positions is None:
            return None
        return [p for p in positions if p.is_alert_active]

    def get_position(self, user_handle: str, position_id: str) -> TrackedPosition | None:
        with Session(self.engine) as session:
            return session.exec(
                select(TrackedPosition).where(
                    TrackedPosition.user_handle == user_handle,
                    TrackedPosition.id == position_id,
                )
            ).first()

    def push_positions(self, user_handle: str, positions: list[TrackedPosition]) -> list[TrackedPosition]:
        """Append positions to a user's list, creating the user if needed."""
        self.ensure_user(user_handle)
        with Session(self.engine) as session:
            for position in positions:
                position.user_handle = user_handle
                session.add(position)
            session.commit()
            for position in positions:
                session.refresh(position)
        logger.info(f"Saved {len(positions)} position(s) for user {user_handle}")
        return positions

    def push_position(self, user_handle: str, position: TrackedPosition) -> TrackedPosition:
        return self.push_positions(user_handle, [position])[0]

    def pull_position(self, user_handle: str, position_id: str) -> bool:
        """Delete one position. False if it did not exist for this user."""
        with Session(self.engine) as session:
            position = session.exec(
                select(TrackedPosition).where(
                    TrackedPosition.user_handle == user_handle,
                    TrackedPosition.id == position_id,
                )
            ).first()
            if position is None:
                return False
            session.delete(position)
            session.commit()
        logger.info(f"Removed position {position_id} for user {user_handle}")
        return True

    def update_position_fields(self, user_handle: str, position_id: str, /, **fields) -> bool:
        """Atomically set the given columns on one position.

        Returns False when no position matched. Only ``MUTABLE_FIELDS`` may be set.
        """
        if not fields:
            raise ValueError("update_position_fields requires at least one field")
        illegal = set(fields) - MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Cannot update immutable or unknown fields: {sorted(illegal)}")

        stmt = (
            update(TrackedPosition)
            .where(TrackedPosition.user_handle == user_handle)
            .where(TrackedPosition.id == position_id)
            .values(**fields)
        )
        with Session(self.engine) as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def claim_alert(self, user_handle: str, position_id: str) -> bool:
        """Set ``alert_pending`` only if it is currently clear.

        True means the caller owns this alert and must send it; False means
        another sweep already fired it or the position is gone.
        """
        stmt = (
            update(TrackedPosition)
            .where(TrackedPosition.user_handle == user_handle)
            .where(TrackedPosition.id == position_id)
            .where(TrackedPosition.alert_pending == False)  # noqa: E712
            .values(alert_pending=True)
        )
        with Session(self.engine) as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def list_armed_positions(self) -> list[TrackedPosition]:
        """All positions across users with an alert configured and none pending."""
        with Session(self.engine) as session:
            return list(session.exec(
                select(TrackedPosition)
                .where(TrackedPosition.alert_pending == False)  # noqa: E712
                .where(or_(
                    TrackedPosition.alert_price_threshold > 0,
                    TrackedPosition.alert_percent_change > 0,
                    TrackedPosition.alert_time_window_minutes > 0,
                ))
            ).all())

    # ------------------------------------------------------------------
    # Alert log
    # ------------------------------------------------------------------

    def record_alert(self, entry: AlertLog):
        with Session(self.engine) as session:
            session.add(entry)
            session.commit()

    def list_alert_log(
        self,
        user_handle: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AlertLog]:
        stmt = select(AlertLog).order_by(AlertLog.timestamp.desc())
        if user_handle is not None:
            stmt = stmt.where(AlertLog.user_handle == user_handle)
        stmt = stmt.offset(offset).limit(limit)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())
