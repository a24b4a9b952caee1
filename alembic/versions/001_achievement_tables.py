"""Users, activity, hour limits and achievement tables.

Revision ID: 001_achievement_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_achievement_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            role VARCHAR(16) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS mentor_apprentices (
            id SERIAL PRIMARY KEY,
            mentor_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            apprentice_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT mentor_apprentices_pair_key UNIQUE(mentor_id, apprentice_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_mentor_apprentices_apprentice
        ON mentor_apprentices(apprentice_id)
    """)

    # --- Activity ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS activity_entries (
            id BIGSERIAL PRIMARY KEY,
            owner_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            kind VARCHAR(16),
            hours NUMERIC(6, 1) NOT NULL DEFAULT 0,
            occurred_at TIMESTAMPTZ NOT NULL,
            mentor_id BIGINT REFERENCES users(id) ON DELETE SET NULL,
            note TEXT NOT NULL DEFAULT ''
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_activity_owner_time
        ON activity_entries(owner_id, occurred_at)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id BIGSERIAL PRIMARY KEY,
            owner_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            mentor_id BIGINT REFERENCES users(id) ON DELETE SET NULL,
            title VARCHAR(256) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Hour limits (user_id NULL = global row) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS hour_limits (
            id SERIAL PRIMARY KEY,
            user_id BIGINT UNIQUE REFERENCES users(id) ON DELETE CASCADE,
            max_work_per_day NUMERIC(7, 1) NOT NULL,
            max_study_per_day NUMERIC(7, 1) NOT NULL,
            max_work_per_week NUMERIC(7, 1) NOT NULL,
            max_study_per_week NUMERIC(7, 1) NOT NULL,
            max_work_per_month NUMERIC(7, 1) NOT NULL,
            max_study_per_month NUMERIC(7, 1) NOT NULL,
            max_work_per_year NUMERIC(7, 1) NOT NULL,
            max_study_per_year NUMERIC(7, 1) NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_hour_limits_single_global
        ON hour_limits((user_id IS NULL))
        WHERE user_id IS NULL
    """)

    # --- Achievement templates and rules ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_templates (
            id SERIAL PRIMARY KEY,
            title VARCHAR(128) NOT NULL,
            kind VARCHAR(16) NOT NULL DEFAULT 'badge',
            scope VARCHAR(16) NOT NULL DEFAULT 'global',
            points INTEGER NOT NULL DEFAULT 0,
            rule_combinator VARCHAR(3) NOT NULL DEFAULT 'and',
            is_visible BOOLEAN NOT NULL DEFAULT true,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS unlock_rules (
            id SERIAL PRIMARY KEY,
            template_id INTEGER NOT NULL REFERENCES achievement_templates(id) ON DELETE CASCADE,
            rule_type VARCHAR(32) NOT NULL,
            threshold NUMERIC(10, 1)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_unlock_rules_template
        ON unlock_rules(template_id)
    """)

    # --- Persisted unlock state ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_records (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            template_id INTEGER NOT NULL REFERENCES achievement_templates(id) ON DELETE CASCADE,
            mentor_id BIGINT REFERENCES users(id) ON DELETE CASCADE,
            locked BOOLEAN NOT NULL DEFAULT true,
            earned_at TIMESTAMPTZ,
            granted_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            CONSTRAINT achievement_records_scope_key
                UNIQUE NULLS NOT DISTINCT (user_id, template_id, mentor_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS unlock_history (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            template_id INTEGER NOT NULL REFERENCES achievement_templates(id) ON DELETE CASCADE,
            unlocked_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            rule_id INTEGER REFERENCES unlock_rules(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT unlock_history_pair_key UNIQUE(user_id, template_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS unlock_history CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_records CASCADE")
    op.execute("DROP TABLE IF EXISTS unlock_rules CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_templates CASCADE")
    op.execute("DROP TABLE IF EXISTS hour_limits CASCADE")
    op.execute("DROP TABLE IF EXISTS projects CASCADE")
    op.execute("DROP TABLE IF EXISTS activity_entries CASCADE")
    op.execute("DROP TABLE IF EXISTS mentor_apprentices CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
