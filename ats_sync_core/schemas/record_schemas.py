"""Internal records handed to the sync engine by the system of record."""

from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CandidateRecord(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    tenant_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    stage: Optional[str] = None
    source: Optional[str] = None
    current_company: Optional[str] = None
    job_title: Optional[str] = None
    photo_url: Optional[str] = None


class InterviewRecord(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    tenant_id: str
    candidate_id: str
    date: datetime
    duration_mins: int = Field(default=60, ge=0)
    stage: Optional[str] = None
    status: str = "SCHEDULED"
    notes: Optional[str] = None
    interviewer_names: List[str] = Field(default_factory=list)
    candidate: Optional[CandidateRecord] = None

    @property
    def end_time(self) -> datetime:
        return self.date + timedelta(minutes=self.duration_mins)


class ImportedCandidate(BaseModel):
    """A person read from a provider, normalized for the system of record."""

    model_config = ConfigDict(str_strip_whitespace=True)

    external_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    job_title: Optional[str] = None
    current_company: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
