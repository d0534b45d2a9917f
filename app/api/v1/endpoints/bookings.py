"""
Booking management endpoints
"""

from typing import Any, Optional
from datetime import datetime, timezone
from uuid import UUID
import logging
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.orm import joinedload

from app.core.database import get_session
from app.core.exceptions import BookingError, ConflictError, NotFoundError
from app.core.security import get_current_user
from app.models.user import User
from app.models.booking import Booking, BookingStatus, TERMINAL_BOOKING_STATUSES
from app.models.property import Room
from app.schemas.booking import BookingCreate, BookingCancel, BookingResponse, BookingListResponse

logger = logging.getLogger(__name__)
router = APIRouter()


def _room_snapshot(room: Room) -> dict:
    return {
        "property_id": str(room.property_id),
        "property_name": room.property.name,
        "property_type": room.property.property_type.value,
        "city": room.property.city,
        "room_number": room.room_number,
        "sharing": room.sharing,
        "monthly_rent": str(room.monthly_rent),
        "food_available": room.food_available,
    }


async def _get_owned_booking(db: AsyncSession, booking_id: UUID, user: User) -> Booking:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id, Booking.customer_id == user.id)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking", booking_id)
    return booking


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Book a room; the booking stays pending until its first payment completes
    """
    result = await db.execute(
        select(Room)
        .options(joinedload(Room.property))
        .where(Room.id == booking_data.room_id)
    )
    room = result.scalar_one_or_none()
    if not room or not room.property.is_active:
        raise NotFoundError("Room", booking_data.room_id)
    if not room.is_available:
        raise BookingError("Room is not available for booking", code="ROOM_UNAVAILABLE")
    if booking_data.food_included and not room.food_available:
        raise BookingError("Food is not offered for this room")

    open_bookings = await db.execute(
        select(func.count(Booking.id)).where(
            Booking.customer_id == current_user.id,
            Booking.room_id == room.id,
            Booking.status.notin_(TERMINAL_BOOKING_STATUSES)
        )
    )
    if open_bookings.scalar():
        raise ConflictError("You already have an active booking for this room")

    booking = Booking(
        customer_id=current_user.id,
        room_id=room.id,
        status=BookingStatus.PENDING,
        price=room.monthly_rent,
        food_included=booking_data.food_included,
        start_date=booking_data.start_date,
        end_date=booking_data.end_date,
        room_snapshot=_room_snapshot(room),
    )
    db.add(booking)
    await db.commit()
    await db.refresh(booking)

    logger.info(f"Booking {booking.id} created by user {current_user.id} for room {room.id}")
    return booking


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Get current user's bookings
    """
    conditions = [Booking.customer_id == current_user.id]
    if status_filter:
        conditions.append(Booking.status == status_filter)

    total = await db.execute(select(func.count(Booking.id)).where(*conditions))
    result = await db.execute(
        select(Booking)
        .where(*conditions)
        .order_by(Booking.created_at.desc())
        .offset(skip)
        .limit(limit)
    )

    return {"bookings": result.scalars().all(), "total": total.scalar() or 0}


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Get booking details
    """
    return await _get_owned_booking(db, booking_id, current_user)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    cancel_data: Optional[BookingCancel] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Cancel a booking; conditional on status so a racing payment
    confirmation and a cancellation cannot both win
    """
    booking = await _get_owned_booking(db, booking_id, current_user)
    if booking.is_terminal:
        raise BookingError(f"Booking is already {booking.status.value}")

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.status.notin_(TERMINAL_BOOKING_STATUSES)
        )
        .values(
            status=BookingStatus.CANCELLED,
            cancelled_at=datetime.now(timezone.utc),
            cancellation_reason=cancel_data.reason if cancel_data else None
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictError("Booking changed while being cancelled")

    await db.commit()
    await db.refresh(booking)

    logger.info(f"Booking {booking_id} cancelled by user {current_user.id}")
    return booking
