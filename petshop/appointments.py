import logging
from datetime import date, datetime
from datetime import time as dt_time
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload

from .dependencies import get_admin_user, get_current_user, get_db
from .errors import Conflict, Forbidden, InvalidTransition, NotFound, Unavailable, ValidationFailed
from .models import (
    ACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    AppointmentStatus,
    Service,
    User,
)
from .schemas import Envelope, Pagination, paginate

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/appointments",
    tags=["appointments"],
)

# Appointments in these statuses can no longer be edited
CLOSED_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED)


# =====================================================
# Pydantic Schemas
# =====================================================

class AppointmentCreate(BaseModel):
    service_id: int = Field(..., ge=1)
    appointment_date: date
    appointment_time: dt_time
    pet_name: Optional[str] = Field(default=None, max_length=100)
    pet_type: Optional[str] = Field(default=None, max_length=50)
    pet_breed: Optional[str] = Field(default=None, max_length=100)
    special_requests: Optional[str] = Field(default=None, max_length=1000)


class AppointmentUpdate(BaseModel):
    appointment_date: Optional[date] = None
    appointment_time: Optional[dt_time] = None
    pet_name: Optional[str] = Field(default=None, max_length=100)
    pet_type: Optional[str] = Field(default=None, max_length=50)
    pet_breed: Optional[str] = Field(default=None, max_length=100)
    special_requests: Optional[str] = Field(default=None, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentOut(BaseModel):
    id: int
    user_id: int
    service_id: int
    service_name: str
    service_duration: Optional[int] = None
    appointment_date: date
    appointment_time: dt_time
    pet_name: Optional[str] = None
    pet_type: Optional[str] = None
    pet_breed: Optional[str] = None
    special_requests: Optional[str] = None
    total_amount: Decimal
    status: AppointmentStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AppointmentList(BaseModel):
    appointments: List[AppointmentOut]
    pagination: Pagination


# =====================================================
# Service Logic
# =====================================================

def _ensure_future(appointment_date: date, appointment_time: dt_time) -> None:
    if datetime.combine(appointment_date, appointment_time) <= datetime.now():
        raise ValidationFailed("Appointment must be scheduled for a future date and time")


def _ensure_slot_free(
    db: Session,
    service_id: int,
    appointment_date: date,
    appointment_time: dt_time,
    exclude_id: Optional[int] = None,
) -> None:
    query = db.query(Appointment.id).filter(
        Appointment.service_id == service_id,
        Appointment.appointment_date == appointment_date,
        Appointment.appointment_time == appointment_time,
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)
    if query.first():
        raise Conflict("This time slot is already booked")


def get_appointment_for(db: Session, user: User, appointment_id: int) -> Appointment:
    query = (
        db.query(Appointment)
        .options(joinedload(Appointment.service))
        .filter(Appointment.id == appointment_id)
    )
    if not user.is_admin:
        query = query.filter(Appointment.user_id == user.id)

    appointment = query.first()
    if not appointment:
        raise NotFound(
            "Appointment with this ID does not exist or you do not have access to it"
        )
    return appointment


def book_appointment(db: Session, user: User, data: AppointmentCreate) -> Appointment:
    service = db.query(Service).filter(Service.id == data.service_id).first()
    if not service:
        raise NotFound("Service with this ID does not exist")
    if not service.is_available:
        raise Unavailable("This service is currently not available")

    _ensure_future(data.appointment_date, data.appointment_time)
    _ensure_slot_free(db, service.id, data.appointment_date, data.appointment_time)

    appointment = Appointment(
        user_id=user.id,
        service_id=service.id,
        total_amount=service.price,
        status=AppointmentStatus.SCHEDULED,
        **data.model_dump(exclude={"service_id"}),
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)

    logger.info(
        "Appointment %s booked for service %s on %s %s",
        appointment.id,
        service.id,
        appointment.appointment_date,
        appointment.appointment_time,
    )
    return appointment


def set_appointment_status(
    db: Session,
    user: User,
    appointment: Appointment,
    new_status: AppointmentStatus,
) -> Appointment:
    if not user.is_admin:
        # Customers can only cancel
        if new_status != AppointmentStatus.CANCELLED:
            raise Forbidden("You can only cancel your own appointments")
        if appointment.status == AppointmentStatus.COMPLETED:
            raise InvalidTransition("Completed appointments cannot be cancelled")

    appointment.status = new_status
    db.commit()
    db.refresh(appointment)

    logger.info("Appointment %s set to %s", appointment.id, new_status.value)
    return appointment


# =====================================================
# API Routes
# =====================================================

@router.post(
    "",
    response_model=Envelope[AppointmentOut],
    status_code=status.HTTP_201_CREATED
)
def create_appointment(
    data: AppointmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    appointment = book_appointment(db, current_user, data)
    return Envelope(
        message="Appointment scheduled successfully",
        data=AppointmentOut.model_validate(appointment),
    )


@router.get("", response_model=Envelope[AppointmentList])
def read_appointments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    appointment_status: Optional[AppointmentStatus] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(Appointment).options(joinedload(Appointment.service))

    if not current_user.is_admin:
        query = query.filter(Appointment.user_id == current_user.id)
    if appointment_status:
        query = query.filter(Appointment.status == appointment_status)
    if start_date:
        query = query.filter(Appointment.appointment_date >= start_date)
    if end_date:
        query = query.filter(Appointment.appointment_date <= end_date)

    query = query.order_by(
        Appointment.appointment_date.desc(),
        Appointment.appointment_time.desc(),
        Appointment.id.desc(),
    )
    appointments, pagination = paginate(query, page, limit)

    return Envelope(
        data=AppointmentList(
            appointments=[AppointmentOut.model_validate(a) for a in appointments],
            pagination=pagination,
        )
    )


@router.get("/{appointment_id}", response_model=Envelope[AppointmentOut])
def read_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    appointment = get_appointment_for(db, current_user, appointment_id)
    return Envelope(data=AppointmentOut.model_validate(appointment))


@router.put("/{appointment_id}", response_model=Envelope[AppointmentOut])
def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    appointment = get_appointment_for(db, current_user, appointment_id)

    if appointment.status in CLOSED_STATUSES:
        raise InvalidTransition("Completed or cancelled appointments cannot be modified")

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationFailed("Please provide at least one field to update")

    # Rescheduling re-checks the slot
    if "appointment_date" in changes or "appointment_time" in changes:
        new_date = changes.get("appointment_date") or appointment.appointment_date
        new_time = changes.get("appointment_time") or appointment.appointment_time
        _ensure_future(new_date, new_time)
        _ensure_slot_free(db, appointment.service_id, new_date, new_time, exclude_id=appointment.id)

    for field, value in changes.items():
        setattr(appointment, field, value)

    db.commit()
    db.refresh(appointment)
    return Envelope(
        message="Appointment updated successfully",
        data=AppointmentOut.model_validate(appointment),
    )


@router.put("/{appointment_id}/status", response_model=Envelope[AppointmentOut])
def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    appointment = get_appointment_for(db, current_user, appointment_id)
    appointment = set_appointment_status(db, current_user, appointment, data.status)
    return Envelope(
        message=f"Appointment {data.status.value} successfully",
        data=AppointmentOut.model_validate(appointment),
    )


@router.delete("/{appointment_id}", response_model=Envelope[None])
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFound("Appointment with this ID does not exist")

    db.delete(appointment)
    db.commit()

    logger.info("Appointment %s deleted", appointment_id)
    return Envelope(message="Appointment deleted successfully")
