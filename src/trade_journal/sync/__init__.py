"""Incremental, idempotent broker synchronization."""

from .orchestrator import AccountSyncResult, SyncOrchestrator, total_synced

__all__ = ["AccountSyncResult", "SyncOrchestrator", "total_synced"]
