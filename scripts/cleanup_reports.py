#!/usr/bin/env python3
"""Hard-delete reviewed moderation reports older than the retention window.

Usage:
    SUPABASE_URL=https://... SUPABASE_SERVICE_ROLE_KEY=... \
    CLOUDINARY_CLOUD_NAME=... CLOUDINARY_API_KEY=... CLOUDINARY_API_SECRET=... \
        python scripts/cleanup_reports.py

Exit codes:
    0 -- all eligible reports deleted
    1 -- configuration missing or the job raised
"""

from cleanup_jobs.runner import cleanup_reports

if __name__ == "__main__":
    cleanup_reports()
