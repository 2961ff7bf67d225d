"""
Access to internal candidate and interview records.

The sync engine does not own these records; the host application provides
them through a RecordSource. Candidates pulled from a provider are written
back through a CandidateSink. InMemoryRecordSource implements both and
serves tests and embedded use.
"""

from typing import Dict, Optional, Protocol, Tuple, runtime_checkable

from ..exceptions import not_found
from ..schemas.record_schemas import CandidateRecord, ImportedCandidate, InterviewRecord


@runtime_checkable
class RecordSource(Protocol):
    def find_candidate(self, tenant_id: str, candidate_id: str) -> Optional[CandidateRecord]:
        ...

    def find_interview(self, tenant_id: str, interview_id: str) -> Optional[InterviewRecord]:
        ...


@runtime_checkable
class CandidateSink(Protocol):
    def save_imported_candidate(
        self,
        tenant_id: str,
        provider: str,
        imported: ImportedCandidate,
        candidate_id: Optional[str] = None,
    ) -> str:
        """Create the candidate, or update ``candidate_id`` when given; return its id."""
        ...


def load_candidate(source: RecordSource, tenant_id: str, candidate_id: str) -> CandidateRecord:
    """
    Raises:
        EntityNotFoundError: If the candidate does not exist for the tenant
    """
    candidate = source.find_candidate(tenant_id, candidate_id)
    if candidate is None:
        raise not_found("Candidate", tenant_id=tenant_id, candidate_id=candidate_id)
    return candidate


def load_interview(source: RecordSource, tenant_id: str, interview_id: str) -> InterviewRecord:
    """
    Load an interview with its candidate attached.

    Raises:
        EntityNotFoundError: If the interview or its candidate does not exist
    """
    interview = source.find_interview(tenant_id, interview_id)
    if interview is None:
        raise not_found("Interview", tenant_id=tenant_id, interview_id=interview_id)
    if interview.candidate is None:
        candidate = load_candidate(source, tenant_id, interview.candidate_id)
        interview = interview.model_copy(update={"candidate": candidate})
    return interview


class InMemoryRecordSource:
    """RecordSource backed by dictionaries."""

    def __init__(self):
        self.candidates: Dict[Tuple[str, str], CandidateRecord] = {}
        self.interviews: Dict[Tuple[str, str], InterviewRecord] = {}

    def add_candidate(self, candidate: CandidateRecord) -> CandidateRecord:
        self.candidates[(candidate.tenant_id, candidate.id)] = candidate
        return candidate

    def add_interview(self, interview: InterviewRecord) -> InterviewRecord:
        self.interviews[(interview.tenant_id, interview.id)] = interview
        return interview

    def find_candidate(self, tenant_id: str, candidate_id: str) -> Optional[CandidateRecord]:
        return self.candidates.get((tenant_id, candidate_id))

    def find_interview(self, tenant_id: str, interview_id: str) -> Optional[InterviewRecord]:
        return self.interviews.get((tenant_id, interview_id))

    def save_imported_candidate(
        self,
        tenant_id: str,
        provider: str,
        imported: ImportedCandidate,
        candidate_id: Optional[str] = None,
    ) -> str:
        fields = {
            "name": imported.name,
            "email": imported.email,
            "phone": imported.phone,
            "job_title": imported.job_title,
            "current_company": imported.current_company,
        }
        existing = self.find_candidate(tenant_id, candidate_id) if candidate_id else None
        if existing is not None:
            changes = {name: value for name, value in fields.items() if value}
            self.add_candidate(existing.model_copy(update=changes))
            return existing.id

        candidate = CandidateRecord(
            id=candidate_id or f"{provider}-{imported.external_id}",
            tenant_id=tenant_id,
            stage="applied",
            source=provider,
            **fields,
        )
        self.add_candidate(candidate)
        return candidate.id
