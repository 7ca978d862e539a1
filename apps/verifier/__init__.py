"""
Verifier App - Scheduled BPJS Eligibility Verification

Responsibilities:
- Scheduled execution (weekday and Saturday windows via APScheduler)
- Holiday gate before every run (cached calendar, fails open)
- Extraction of today's BPJS outpatient visits from SIMRS (MySQL)
- Deduplicated enqueue into the SQLite job store
- Sequential verification: signed BPJS request, decrypt + decompress,
  Selenium consent click, bounded retries
- Telegram notifications for permanent failures and batch summaries

Output:
- SQLite table jobs (status, attempt, response_data per visit per day)
"""
