from typing import Optional

from supabase import create_client, Client

from config import Settings

_SUPABASE_SINGLETON: Optional[Client] = None


def get_supabase_client(settings: Optional[Settings] = None) -> Client:
    """Shared Supabase client for the process, created on first use"""
    global _SUPABASE_SINGLETON
    if _SUPABASE_SINGLETON is not None:
        return _SUPABASE_SINGLETON

    settings = settings or Settings.from_env()

    if not settings.supabase_url:
        raise ValueError("SUPABASE_URL environment variable is required. Please check your .env file.")
    if not settings.supabase_key:
        raise ValueError("SUPABASE_ANON_KEY environment variable is required. Please check your .env file.")

    _SUPABASE_SINGLETON = create_client(settings.supabase_url, settings.supabase_key)
    return _SUPABASE_SINGLETON


def reset_supabase_client() -> None:
    global _SUPABASE_SINGLETON
    _SUPABASE_SINGLETON = None
