"""
Database client configuration.

Supabase holds the per-sender extraction rules and the extraction job log.
The pipeline itself never touches the database; only policy_store and the
health check do.
"""

import os
from typing import Optional

from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

if not SUPABASE_URL:
    raise ValueError("SUPABASE_URL must be set in environment variables")

# Rule lookups and job writes bypass RLS, so they need the service key.
# None when it is not configured: lookups then use the default policy.
supabase_admin: Optional[Client] = (
    create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY) if SUPABASE_SERVICE_KEY else None
)
