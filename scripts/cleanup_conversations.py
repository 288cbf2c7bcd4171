#!/usr/bin/env python3
"""Hard-delete conversations both parties deleted, or inactive for a month.

Usage:
    SUPABASE_URL=https://... SUPABASE_SERVICE_ROLE_KEY=... \
    CLOUDINARY_CLOUD_NAME=... CLOUDINARY_API_KEY=... CLOUDINARY_API_SECRET=... \
        python scripts/cleanup_conversations.py

Exit codes:
    0 -- all eligible conversations and their messages deleted
    1 -- configuration missing or the job raised
"""

from cleanup_jobs.runner import cleanup_conversations

if __name__ == "__main__":
    cleanup_conversations()
