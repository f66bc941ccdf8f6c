"""Database clients."""

from rehab_goals.db.supabase import SupabaseClient, get_supabase_client

__all__ = ["SupabaseClient", "get_supabase_client"]
