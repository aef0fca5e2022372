"""
backfill — Budget-gated history backfill run on a cron trigger.

Sub-modules:
    runner — build_city_list, BackfillEngine, schedule_backfill_job
"""
