#!/usr/bin/env python3
"""Flip active listings past their expiry date to ``expired``.

Usage:
    SUPABASE_URL=https://... SUPABASE_SERVICE_ROLE_KEY=... \
    CLOUDINARY_CLOUD_NAME=... CLOUDINARY_API_KEY=... CLOUDINARY_API_SECRET=... \
        python scripts/update_expired_listings.py

Exit codes:
    0 -- run finished (failed batches are counted, not fatal)
    1 -- configuration missing or the job raised
"""

from cleanup_jobs.runner import update_expired_listings

if __name__ == "__main__":
    update_expired_listings()
