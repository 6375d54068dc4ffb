"""
Job confirmation dispatch.

When a carting job is scheduled, the customer is notified over every
channel we can reach them on (voice call, email, SMS).  Channels are
attempted concurrently and independently; one provider outage never
fails the whole confirmation.

- ``domain``       Job, ChannelOutcome, DispatchResult, ActivityLogEntry
- ``errors``       JobNotFound and channel-level error types
- ``ports``        storage / adapter / audit protocols
- ``messages``     per-channel message rendering
- ``orchestrator`` fan-out, aggregation and audit hand-off

This package must NOT import provider SDKs or asyncpg.
"""
