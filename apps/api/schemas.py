from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from uuid import UUID
from typing import Any, Dict, List, Optional


# ---- Gym setup wizard ----

class SetupNameRequest(BaseModel):
    name: str
    set_as_active: bool = False


class SetupOptionRequest(BaseModel):
    option: str  # ai_upload, copy, defaults, empty
    source_gym_id: Optional[UUID] = None  # required for copy


class SetupPhotosRequest(BaseModel):
    images: List[str] = Field(default_factory=list)  # base64 encoded


class SetupExercisesRequest(BaseModel):
    exercise_ids: List[UUID] = Field(default_factory=list)


class SetupProfileRequest(BaseModel):
    program_type: Optional[str] = None  # ulul or ppl
    preferred_session_length: Optional[str] = None  # 15-30, 30-45, 45-60, 60-90


class SetupResultResponse(BaseModel):
    status: str  # success, deferred, cancelled, error
    gym_id: Optional[UUID] = None
    message: Optional[str] = None
    step: str


class SetupStateResponse(BaseModel):
    """Current wizard state plus the result of the setup that just ended, if any."""
    state: Dict[str, Any]
    result: Optional[SetupResultResponse] = None


# ---- Gym management ----

class GymResponse(BaseModel):
    id: UUID
    name: str
    created_at: datetime
    is_active: bool = False
    is_incomplete: bool = False

    model_config = ConfigDict(from_attributes=True)


class GymListResponse(BaseModel):
    gyms: List[GymResponse]
    active_gym_id: Optional[UUID] = None


class GymRenameRequest(BaseModel):
    name: str


class GymDeleteResponse(BaseModel):
    deleted_gym_id: UUID
    active_gym_id: Optional[UUID] = None
