"""
scheduler — Persisted cron jobs that fetch forecasts and notify.

Sub-modules:
    jobs      — ForecastJob, NotifyConfig, JobConfig (wire models)
    storage   — JobStore: JSON file and SQL backends
    cron      — cron parsing + CronScheduler (APScheduler)
    executor  — JobExecutor: one tick, message rendering
    service   — SchedulerService: CRUD, config loading, status
"""
