'''
fieldops Test Suite

Test Modules:
-------------
- test_check_ins.py: Visit check-in and check-out
  - Duration formatting and XP awards
  - Client check-ins and next-action status

- test_claims.py: Expense claims
  - Status transitions restricted to elevated callers
  - Share tokens and public share links

- test_competitors.py: Competitor records, batch create and analytics
  - Bulk create and update with threat scoring

- test_sales_analytics.py: Quotation-driven sales dashboards

- test_journals.py: Journals and inspections
  - Inspection scoring per category

- test_leads.py: Leads, status history and CSV import
  - Round-robin assignment across the pool

- test_location.py: GPS trip analysis (stops, distance, speed)

- test_report_utils.py: Shared report formatting and collectors

- test_map_data.py: Live operations map markers, events and GPS analysis

- test_org_activity.py: Organisation activity periods, totals and growth

- test_user_daily.py: Per-user daily report analytics

- test_reports.py: Report dispatch, caching and persistence
  - Organisation-scoped report cache clear

- test_jobs.py: Scheduled jobs
  - Slack digest never duplicates for the same date
  - End-of-day reports count generated, skipped and failed users

- test_rewards.py: XP awards and the rewards snapshot

- test_database.py: asyncpg pool lifecycle and query helpers

- test_api.py: Authentication, role guards and router validation

Running Tests:
--------------
    pip install -e ".[test]"
    pytest fieldops/tests/ -v

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
