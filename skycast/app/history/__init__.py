"""
history — Hourly weather history, daily summaries and trends.

Sub-modules:
    repository — weather_history table, HistoryRepository
    models     — response dataclasses
    trends     — linear-trend summary (numpy)
    service    — HistoryService (budget-gated timemachine fetches)
"""
