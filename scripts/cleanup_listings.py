#!/usr/bin/env python3
"""Delete listings expired for more than the grace window, images first.

Usage:
    SUPABASE_URL=https://... SUPABASE_SERVICE_ROLE_KEY=... \
    CLOUDINARY_CLOUD_NAME=... CLOUDINARY_API_KEY=... CLOUDINARY_API_SECRET=... \
        python scripts/cleanup_listings.py

Exit codes:
    0 -- run finished (unconfirmed image deletions are warnings)
    1 -- configuration missing or the job raised
"""

from cleanup_jobs.runner import cleanup_listings

if __name__ == "__main__":
    cleanup_listings()
