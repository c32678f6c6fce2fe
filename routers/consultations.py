from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException
from auth import get_current_identity
from backend import ConsultationNotFoundError, redis_backend
from registry import Identity
from schemas.consultations import (
    ConsultationActionResponse,
    ConsultationDetailsResponse,
    ConsultationResponse,
    CreateConsultationRequest,
)
from logging_config import get_logger

logger = get_logger(__name__)

consultations_router = APIRouter(prefix="/consultations", tags=["consultations"])


def to_response(record: dict) -> ConsultationResponse:
    return ConsultationResponse(
        room_id=record["roomId"],
        appointment_id=record.get("appointmentId"),
        status=record.get("status", "scheduled"),
        created_at=record.get("createdAt"),
        start_time=record.get("startTime"),
        end_time=record.get("endTime"),
        duration=record.get("duration"),
    )


def to_details(record: dict) -> ConsultationDetailsResponse:
    room_id = record["roomId"]
    return ConsultationDetailsResponse(
        **to_response(record).model_dump(),
        chat_messages=redis_backend.get_chat_messages(room_id),
        transcription=redis_backend.get_transcription(room_id),
    )


@consultations_router.post("", status_code=201, response_model=ConsultationResponse)
def create_consultation(request: CreateConsultationRequest, identity: Identity = Depends(get_current_identity)):
    # Normally called by the scheduling side once an appointment is booked
    logger.info(f"Consultation creation request for room {request.room_id} from user {identity.user_id}")
    if redis_backend.consultation_exists(request.room_id):
        logger.warning(f"Consultation creation failed: room {request.room_id} already has a record")
        raise HTTPException(status_code=409, detail="Consultation already exists")

    record = {
        "roomId": request.room_id,
        "appointmentId": request.appointment_id,
        "status": "scheduled",
        "createdAt": datetime.now(timezone.utc).isoformat(),
    }
    redis_backend.create_consultation(request.room_id, record)
    return to_response(record)


@consultations_router.get("/room/{room_id}", response_model=ConsultationDetailsResponse)
def get_consultation(room_id: str, identity: Identity = Depends(get_current_identity)):
    """Consultation record for a room, with the saved chat and transcription."""
    logger.info(f"Consultation details request for room {room_id} from user {identity.user_id}")
    record = redis_backend.get_consultation(room_id)
    if not record:
        logger.warning(f"Consultation details failed: room {room_id} not found")
        raise HTTPException(status_code=404, detail="Consultation not found")

    return to_details(record)


@consultations_router.get("/appointment/{appointment_id}", response_model=ConsultationDetailsResponse)
def get_consultation_by_appointment(appointment_id: str, identity: Identity = Depends(get_current_identity)):
    logger.info(f"Consultation lookup for appointment {appointment_id} from user {identity.user_id}")
    record = redis_backend.get_consultation_by_appointment(appointment_id)
    if not record:
        logger.warning(f"Consultation lookup failed: appointment {appointment_id} has no consultation")
        raise HTTPException(status_code=404, detail="Consultation not found")
    return to_details(record)


@consultations_router.post("/{room_id}/start", response_model=ConsultationActionResponse)
def start_consultation(room_id: str, identity: Identity = Depends(get_current_identity)):
    logger.info(f"Start consultation request for room {room_id} from user {identity.user_id}")
    try:
        record = redis_backend.start_consultation(room_id)
    except ConsultationNotFoundError:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return ConsultationActionResponse(message="Consultation started", consultation=to_response(record))


@consultations_router.post("/{room_id}/end", response_model=ConsultationActionResponse)
def end_consultation(room_id: str, identity: Identity = Depends(get_current_identity)):
    logger.info(f"End consultation request for room {room_id} from user {identity.user_id}")
    try:
        record = redis_backend.end_consultation(room_id)
    except ConsultationNotFoundError:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return ConsultationActionResponse(message="Consultation ended", consultation=to_response(record))
