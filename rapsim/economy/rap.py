"""
Recent Average Price (RAP) engine.

RAP is a per-day running average of resale prices. Within a day each sale
may raise RAP by at most 20% over the snapshot it updates; decreases are
not bounded. The cap is reapplied on every sale, so repeated outlier sales
can only ratchet RAP up one bounded step at a time.

``record_sale`` is the only code that writes ``Item.rap``.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from rapsim.database.models import Item, RapSnapshot, RapChangeLog
from rapsim.database.operations import queue_event
from rapsim.economy.events import ProjectionChanged
from rapsim.economy.valuation import is_projected
from rapsim.errors import StaleStateError

logger = logging.getLogger(__name__)

MAX_DAILY_STEP = 1.2


def dampened_average(old_rap: int, old_count: int, price: int) -> int:
    """
    Fold one sale into an existing daily average.

    The running mean is capped at ``floor(old_rap * 1.2)``; there is no floor.
    """
    candidate = (old_rap * old_count + price) // (old_count + 1)
    cap = int(old_rap * MAX_DAILY_STEP)
    return min(candidate, cap)


def _apply_to_snapshot(snapshot: Optional[RapSnapshot], price: int) -> Tuple[int, int, int]:
    """Return (rap_value, sales_count, sales_volume) after one more sale."""
    if snapshot is None:
        return price, 1, price

    new_rap = dampened_average(snapshot.rap_value, snapshot.sales_count, price)
    return new_rap, snapshot.sales_count + 1, snapshot.sales_volume + price


def record_sale(session: Session, item_id: int, price: int, now: Optional[datetime] = None) -> int:
    """
    Record one resale of ``item_id`` at ``price`` and return the new RAP.

    Creates today's snapshot on the first sale of the day, otherwise updates it
    in place. Also writes the item's RAP, a change-log row and, when the
    projection status flips, a ProjectionChanged event.

    Raises:
        StaleStateError: the item does not exist
        ValueError: ``price`` is negative
    """
    if price < 0:
        raise ValueError(f"Sale price must be non-negative, got {price}")

    now = now or datetime.now()
    today = now.date()

    item = session.get(Item, item_id)
    if item is None:
        raise StaleStateError(f"Item {item_id} no longer exists")

    snapshot = (
        session.query(RapSnapshot)
        .filter(RapSnapshot.item_id == item_id, RapSnapshot.snapshot_date == today)
        .with_for_update()
        .one_or_none()
    )

    new_rap, sales_count, sales_volume = _apply_to_snapshot(snapshot, price)

    if snapshot is None:
        snapshot = RapSnapshot(
            item_id=item_id,
            snapshot_date=today,
            rap_value=new_rap,
            sales_count=sales_count,
            sales_volume=sales_volume,
            updated_at=now
        )
        session.add(snapshot)
    else:
        snapshot.rap_value = new_rap
        snapshot.sales_count = sales_count
        snapshot.sales_volume = sales_volume
        snapshot.updated_at = now

    old_rap = item.rap or 0
    was_projected = is_projected(item.value, old_rap)
    item.rap = new_rap

    session.add(RapChangeLog(
        item_id=item_id,
        old_rap=old_rap,
        new_rap=new_rap,
        purchase_price=price,
        created_at=now
    ))

    now_projected = is_projected(item.value, new_rap)
    if was_projected != now_projected:
        queue_event(session, ProjectionChanged(
            item_id=item_id,
            is_projected=now_projected,
            value=item.value or 0,
            rap=new_rap,
            occurred_at=now
        ))
        logger.info(f"Item {item_id} {'PROJECTED' if now_projected else 'NORMALIZED'} "
                    f"(value={item.value}, rap={new_rap})")

    session.flush()
    logger.debug(f"RAP item={item_id} sale={price} rap {old_rap} -> {new_rap} "
                 f"(day sales={sales_count})")
    return new_rap
