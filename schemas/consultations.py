from pydantic import AliasChoices, BaseModel, Field
from typing import Optional


class CreateConsultationRequest(BaseModel):
    room_id: str = Field(validation_alias=AliasChoices("roomId", "room_id"), min_length=1)
    appointment_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("appointmentId", "appointment_id"))

class ConsultationResponse(BaseModel):
    room_id: str
    appointment_id: Optional[str] = None
    status: str
    created_at: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration: Optional[int] = None  # minutes

class ConsultationDetailsResponse(ConsultationResponse):
    chat_messages: list[dict] = []
    transcription: list[dict] = []

class ConsultationActionResponse(BaseModel):
    message: str
    consultation: ConsultationResponse
