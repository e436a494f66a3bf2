"""
Supabase client configuration.
Supabase Auth issues the JWTs that identify callers of the Gmail endpoints.
"""

import os
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

if not SUPABASE_URL or not SUPABASE_KEY:
    raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

# Client for user-level operations (uses anon key), used for remote JWT checks
supabase: Client = create_client(SUPABASE_URL, SUPABASE_KEY)
