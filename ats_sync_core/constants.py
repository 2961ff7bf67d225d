"""
Constants and enums for the ATS Sync Core framework.

This module centralizes the magic strings used by the sync engine, the
provider adapters and the persistence layer so that stored values, queue
names and environment variable names stay consistent.
"""

from enum import Enum


class Provider(str, Enum):
    """External systems the sync engine can talk to."""

    HUBSPOT = "hubspot"
    GREENHOUSE = "greenhouse"
    LEVER = "lever"
    WORKDAY = "workday"
    BAMBOOHR = "bamboohr"
    WHATSAPP = "whatsapp"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Provider.HUBSPOT: "HubSpot",
    Provider.GREENHOUSE: "Greenhouse",
    Provider.LEVER: "Lever",
    Provider.WORKDAY: "Workday",
    Provider.BAMBOOHR: "BambooHR",
    Provider.WHATSAPP: "WhatsApp",
}


class IntegrationStatus(str, Enum):
    """Connection state of a tenant's integration with a provider."""

    PENDING = "pending"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class SyncStatus(str, Enum):
    """Lifecycle of a single sync log entry."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    RETRYING = "RETRYING"


class SyncDirection(str, Enum):
    """Direction of data flow for a sync operation."""

    OUTBOUND = "OUTBOUND"
    INBOUND = "INBOUND"


class SyncEventType(str, Enum):
    """Domain events recorded in the sync log."""

    CANDIDATE_CREATED = "CANDIDATE_CREATED"
    CANDIDATE_UPDATED = "CANDIDATE_UPDATED"
    CANDIDATE_STAGE_CHANGED = "CANDIDATE_STAGE_CHANGED"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    INTERVIEW_RESCHEDULED = "INTERVIEW_RESCHEDULED"
    INTERVIEW_CANCELLED = "INTERVIEW_CANCELLED"
    INTERVIEW_COMPLETED = "INTERVIEW_COMPLETED"
    EMPLOYEE_CREATED = "EMPLOYEE_CREATED"
    MANUAL_SYNC = "MANUAL_SYNC"
    CANDIDATE_IMPORT = "CANDIDATE_IMPORT"


class CandidateEvent(str, Enum):
    """Candidate sync entry point event types."""

    CREATED = "created"
    UPDATED = "updated"
    STAGE_CHANGED = "stage_changed"


class InterviewEvent(str, Enum):
    """Interview sync entry point event types."""

    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class EntityType(str, Enum):
    """Internal entity types that can be mapped to external records."""

    CANDIDATE = "candidate"
    INTERVIEW = "interview"
    EMPLOYEE = "employee"


class ErrorKind(str, Enum):
    """Classification of provider API failures."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"


class SyncMode(str, Enum):
    """Per-entity sync capability advertised by a provider."""

    NONE = "none"
    PUSH = "push"
    PULL = "pull"
    WRITE = "write"


class HandoffTrigger(str, Enum):
    """What caused an employee handoff."""

    MANUAL = "MANUAL"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"


class JobStatus(str, Enum):
    """How a dequeued sync job was settled."""

    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


class ImportMode(str, Enum):
    """How inbound candidate imports are triggered for an integration."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"


class ImportFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"


class QueueName(str, Enum):
    """Standard queue names used in the framework."""

    INTEGRATION_SYNC = "integration-sync"
    LOGS = "logs-queue"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    ENCRYPTION_KEY = "ENCRYPTION_KEY"
    OAUTH_STATE_SECRET = "OAUTH_STATE_SECRET"
    HUBSPOT_CLIENT_ID = "HUBSPOT_CLIENT_ID"
    HUBSPOT_CLIENT_SECRET = "HUBSPOT_CLIENT_SECRET"
    HUBSPOT_REDIRECT_URI = "HUBSPOT_REDIRECT_URI"
    LEVER_CLIENT_ID = "LEVER_CLIENT_ID"
    LEVER_CLIENT_SECRET = "LEVER_CLIENT_SECRET"
    LEVER_REDIRECT_URI = "LEVER_REDIRECT_URI"
    WORKDAY_CLIENT_ID = "WORKDAY_CLIENT_ID"
    WORKDAY_CLIENT_SECRET = "WORKDAY_CLIENT_SECRET"
    WORKDAY_REDIRECT_URI = "WORKDAY_REDIRECT_URI"
    WORKDAY_TENANT_URL = "WORKDAY_TENANT_URL"
    BAMBOOHR_CLIENT_ID = "BAMBOOHR_CLIENT_ID"
    BAMBOOHR_CLIENT_SECRET = "BAMBOOHR_CLIENT_SECRET"
    BAMBOOHR_REDIRECT_URI = "BAMBOOHR_REDIRECT_URI"
    BAMBOOHR_COMPANY_DOMAIN = "BAMBOOHR_COMPANY_DOMAIN"
    WHATSAPP_PHONE_NUMBER_ID = "WHATSAPP_PHONE_NUMBER_ID"
    WHATSAPP_ACCESS_TOKEN = "WHATSAPP_ACCESS_TOKEN"


class LogContextKey(str, Enum):
    """Standard keys for logging context."""

    OPERATION_ID = "operation_id"
    CORRELATION_ID = "correlation_id"
    TENANT_ID = "tenant_id"
    PROVIDER = "provider"
    ENTITY_ID = "entity_id"
    DURATION_MS = "duration_ms"
    STATUS = "status"
    ERROR_CODE = "error_code"
    OPERATION = "operation"


class Limits:
    """System limits and thresholds."""

    MAX_RETRY_ATTEMPTS = 3
    DEFAULT_LOG_PAGE_SIZE = 50
    DEFAULT_ERROR_SUMMARY_SIZE = 10
    DEFAULT_LOG_RETENTION_DAYS = 30
    QUEUE_JOB_ATTEMPTS = 5
    QUEUE_JOB_BACKOFF_MS = 2000
    IMPORT_JOB_ATTEMPTS = 3
    IMPORT_JOB_BACKOFF_MS = 5000
    IMPORT_PAGE_SIZE = 100
    IMPORT_MAX_PAGES = 50


class Timeouts:
    """Timeout values in seconds."""

    EXTERNAL_API_CALL = 30
    TOKEN_REFRESH_BUFFER = 300
    SYNC_LOCK_TTL = 300
    SYNC_LOCK_WAIT = 30
    QUEUE_JOB_VISIBILITY = 300
