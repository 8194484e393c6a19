"""Sync infrastructure for Scalesync.

Modules:
    reconciler  — Diff desired vs. current records for a scope and apply the delta
    partition   — Split date ranges into calendar-month sub-ranges
    coordinator — Fan out one reconciliation per month and join the results
    energy      — Daily (exclusive) and intraday (upsert) energy writes
    store       — Store interface, Postgres and in-memory implementations
"""
