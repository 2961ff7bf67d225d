"""Pydantic schemas for credentials, internal records and integration views."""

from .credential_schemas import ProviderCredentials, TokenInfo, TokenResponse
from .integration_schemas import (
    ConnectionTestResult,
    CounterState,
    ErrorGroup,
    ErrorSummary,
    HandoffResult,
    IntegrationEventMessage,
    IntegrationStatusView,
    ImportResult,
    IntegrationView,
    JobOptions,
    JobOutcome,
    ProviderCapabilities,
    SyncStats,
    SyncSummary,
)
from .record_schemas import CandidateRecord, ImportedCandidate, InterviewRecord

__all__ = [
    # Credentials
    "ProviderCredentials",
    "TokenInfo",
    "TokenResponse",
    # Integration views
    "ConnectionTestResult",
    "CounterState",
    "ErrorGroup",
    "ErrorSummary",
    "HandoffResult",
    "IntegrationEventMessage",
    "IntegrationStatusView",
    "ImportResult",
    "IntegrationView",
    "JobOptions",
    "JobOutcome",
    "ProviderCapabilities",
    "SyncStats",
    "SyncSummary",
    # Records
    "CandidateRecord",
    "ImportedCandidate",
    "InterviewRecord",
]
