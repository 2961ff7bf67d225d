"""Services for credentials, sync logs, mappings and integration management."""
