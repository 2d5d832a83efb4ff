from journal_engine.core.config import settings
from journal_engine.db.setup_db_instructions import create_tasks_table_sql


def test_tasks_table_guards():
    """The schema carries the ordering and single-runner guards the store relies on."""
    assert "ON tasks(session_id, sequence)" in create_tasks_table_sql
    assert "ON tasks(session_id) WHERE status = 'running'" in create_tasks_table_sql
    assert "UNIQUE (task_id, event_key)" in create_tasks_table_sql


def test_match_embeddings_function():
    assert "CREATE OR REPLACE FUNCTION match_embeddings" in create_tasks_table_sql
    assert "match_type TEXT DEFAULT NULL" in create_tasks_table_sql


def test_journal_tables():
    for table in (
        "users", "ask_threads", "ask_messages", "daily_events",
        "daily_summaries", "weekly_summaries", "monthly_summaries",
    ):
        assert f"CREATE TABLE IF NOT EXISTS {table} (" in create_tasks_table_sql
    assert "UNIQUE (user_id, date)" in create_tasks_table_sql
    assert "UNIQUE (user_id, week_start)" in create_tasks_table_sql
    assert "UNIQUE (user_id, month_start)" in create_tasks_table_sql


def test_vector_size_matches_embedding_models():
    assert create_tasks_table_sql.count(f"VECTOR({settings.EMBEDDING_DIMENSIONS})") == 2
