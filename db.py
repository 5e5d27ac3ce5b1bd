"""Supabase wiring for the app. Clients and stores are cached via Streamlit."""
import logging
import os

import streamlit as st
from dotenv import load_dotenv
from supabase import Client

from examcore.database import DatabaseClient, env_client
from examcore.snapshots import JsonFileSnapshotStore

load_dotenv()

DEFAULT_SNAPSHOT_DIR = ".exam_snapshots"


@st.cache_resource
def get_supabase() -> Client:
    return env_client()


def get_supabase_uncached() -> Client:
    """For CLI/scripts (no Streamlit context)."""
    return env_client()


@st.cache_resource
def get_exam_store() -> DatabaseClient:
    return DatabaseClient(get_supabase())


@st.cache_resource
def get_snapshot_store() -> JsonFileSnapshotStore:
    directory = os.environ.get("EXAM_SNAPSHOT_DIR") or DEFAULT_SNAPSHOT_DIR
    logging.getLogger(__name__).info("Snapshots stored under %s", directory)
    return JsonFileSnapshotStore(directory)


def list_exams(limit: int = 100):
    """Exams for the picker, newest first."""
    return (
        get_supabase()
        .table("exams")
        .select("id, name, status, is_practice, start_at, end_at")
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
