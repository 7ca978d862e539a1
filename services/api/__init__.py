"""
Dashboard API Service - FastAPI Application

Responsibilities:
- Expose read-only endpoints for the operations dashboard
- Query the SQLite job store for recent jobs and status counts
- Preview today's SIMRS visits without enqueuing them
- Stream live status counts as server-sent events
- Serve the dashboard page that renders those counts

Endpoints:
- GET / - Dashboard page with live status counts (static/)
- GET /health - Health check (job store reachable)
- GET /jobs - Latest 100 jobs
- GET /jobs/stats - Job count per status
- GET /patients - Today's visits from SIMRS
- GET /events - Status counts every 5 seconds (text/event-stream)
"""
