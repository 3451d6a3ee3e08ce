"""Baseline migration - users, clients, calls, forms, tasks, notifications

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-01

Creates every table used by call ingestion, the form job queue and task
automations. PostgreSQL only; tests build the schema from the ORM metadata.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create baseline tables."""

    # ==========================================================================
    # Users and notification preferences
    # ==========================================================================
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY,
            email VARCHAR(255) UNIQUE NOT NULL,
            first_name VARCHAR(100),
            last_name VARCHAR(100),
            role VARCHAR(20) NOT NULL,
            avatar_url VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE user_notification_settings (
            user_id UUID PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            email_enabled BOOLEAN NOT NULL DEFAULT TRUE,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Client profiles, active clients, services
    # ==========================================================================
    op.execute('''
        CREATE TABLE client_profiles (
            id UUID PRIMARY KEY,
            user_id UUID UNIQUE NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            business_name VARCHAR(255),
            ctm_account_id VARCHAR(100),
            ctm_api_key TEXT,
            ctm_api_secret TEXT,
            ai_prompt TEXT,
            auto_star_enabled BOOLEAN NOT NULL DEFAULT FALSE,
            account_manager_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            ctm_sync_cursor TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE active_clients (
            id UUID PRIMARY KEY,
            owner_user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            client_name VARCHAR(255),
            client_phone VARCHAR(50),
            client_phone_normalized VARCHAR(50),
            client_email VARCHAR(255),
            source TEXT,
            funnel_data JSONB NOT NULL DEFAULT '{}'::jsonb,
            archived_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_active_clients_owner_phone ON active_clients(owner_user_id, client_phone_normalized)')

    op.execute('''
        CREATE TABLE client_services (
            id UUID PRIMARY KEY,
            active_client_id UUID NOT NULL REFERENCES active_clients(id) ON DELETE CASCADE,
            service_name VARCHAR(255) NOT NULL,
            agreed_price NUMERIC(12, 2),
            agreed_date TIMESTAMPTZ,
            redacted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Call logs
    # ==========================================================================
    op.execute('''
        CREATE TABLE call_logs (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            call_id VARCHAR(128) NOT NULL,
            direction VARCHAR(20),
            from_number VARCHAR(50),
            to_number VARCHAR(50),
            started_at TIMESTAMPTZ,
            duration_sec INTEGER,
            score INTEGER NOT NULL DEFAULT 0,
            meta JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_call_logs_user_call UNIQUE (user_id, call_id),
            CONSTRAINT ck_call_logs_score_range CHECK (score >= 0 AND score <= 5)
        )
    ''')
    op.execute('CREATE INDEX idx_call_logs_user_started ON call_logs(user_id, started_at)')
    op.execute("CREATE INDEX idx_call_logs_user_caller ON call_logs(user_id, (meta ->> 'caller_number_normalized'))")
    op.execute("CREATE INDEX idx_call_logs_user_category ON call_logs(user_id, (meta ->> 'category'))")

    # ==========================================================================
    # Forms, submissions, submission jobs
    # ==========================================================================
    op.execute('''
        CREATE TABLE form_definitions (
            id UUID PRIMARY KEY,
            user_id UUID REFERENCES users(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            form_type VARCHAR(20) NOT NULL DEFAULT 'conversion',
            settings_json JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE form_submissions (
            id UUID PRIMARY KEY,
            form_id UUID NOT NULL REFERENCES form_definitions(id) ON DELETE CASCADE,
            form_version_id UUID,
            submission_kind VARCHAR(20) NOT NULL,
            encrypted_payload BYTEA,
            non_phi_payload JSONB,
            attribution JSONB NOT NULL DEFAULT '{}'::jsonb,
            ip VARCHAR(64),
            user_agent TEXT,
            embed_domain VARCHAR(255),
            ctm_sent BOOLEAN NOT NULL DEFAULT FALSE,
            ctm_sent_at TIMESTAMPTZ,
            email_sent BOOLEAN NOT NULL DEFAULT FALSE,
            email_sent_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_form_submissions_one_payload
                CHECK ((encrypted_payload IS NULL) <> (non_phi_payload IS NULL))
        )
    ''')
    op.execute('CREATE INDEX idx_form_submissions_form ON form_submissions(form_id, created_at)')

    op.execute('''
        CREATE TABLE form_submission_jobs (
            id UUID PRIMARY KEY,
            submission_id UUID NOT NULL REFERENCES form_submissions(id) ON DELETE CASCADE,
            job_type VARCHAR(50) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 5,
            idempotency_key VARCHAR(255) UNIQUE NOT NULL,
            scheduled_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_form_jobs_attempts CHECK (attempts <= max_attempts)
        )
    ''')
    op.execute('CREATE INDEX idx_form_jobs_due ON form_submission_jobs(status, scheduled_at)')
    op.execute('CREATE INDEX idx_form_jobs_submission ON form_submission_jobs(submission_id)')

    # ==========================================================================
    # Task boards, items, automations
    # ==========================================================================
    op.execute('''
        CREATE TABLE task_boards (
            id UUID PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE task_groups (
            id UUID PRIMARY KEY,
            board_id UUID NOT NULL REFERENCES task_boards(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            order_index INTEGER NOT NULL DEFAULT 0
        )
    ''')

    op.execute('''
        CREATE TABLE task_items (
            id UUID PRIMARY KEY,
            group_id UUID NOT NULL REFERENCES task_groups(id) ON DELETE CASCADE,
            name VARCHAR(500) NOT NULL,
            status VARCHAR(100) NOT NULL DEFAULT 'To Do',
            due_date DATE,
            is_voicemail BOOLEAN NOT NULL DEFAULT FALSE,
            needs_attention BOOLEAN NOT NULL DEFAULT FALSE,
            archived_at TIMESTAMPTZ,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_task_items_due ON task_items(due_date)')
    op.execute('CREATE INDEX idx_task_items_archived ON task_items(archived_at)')

    op.execute('''
        CREATE TABLE task_item_assignees (
            item_id UUID NOT NULL REFERENCES task_items(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (item_id, user_id)
        )
    ''')

    op.execute('''
        CREATE TABLE task_updates (
            id UUID PRIMARY KEY,
            item_id UUID NOT NULL REFERENCES task_items(id) ON DELETE CASCADE,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE task_board_automations (
            id UUID PRIMARY KEY,
            board_id UUID NOT NULL REFERENCES task_boards(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            trigger_type VARCHAR(50) NOT NULL,
            trigger_config JSONB NOT NULL DEFAULT '{}'::jsonb,
            action_type VARCHAR(50) NOT NULL,
            action_config JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_board_automations_board ON task_board_automations(board_id, is_active)')

    op.execute('''
        CREATE TABLE task_global_automations (
            id UUID PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            trigger_type VARCHAR(50) NOT NULL,
            trigger_config JSONB NOT NULL DEFAULT '{}'::jsonb,
            action_type VARCHAR(50) NOT NULL,
            action_config JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE task_automation_runs (
            id UUID PRIMARY KEY,
            scope VARCHAR(20) NOT NULL,
            automation_id UUID NOT NULL,
            board_id UUID,
            item_id UUID NOT NULL,
            ran_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            outcome VARCHAR(20) NOT NULL,
            detail JSONB NOT NULL DEFAULT '{}'::jsonb
        )
    ''')
    op.execute('CREATE INDEX idx_automation_runs_dedupe ON task_automation_runs(automation_id, item_id, ran_at)')
    op.execute('CREATE INDEX idx_automation_runs_item ON task_automation_runs(item_id, ran_at)')

    # ==========================================================================
    # Notifications
    # ==========================================================================
    op.execute('''
        CREATE TABLE notifications (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(255) NOT NULL,
            body TEXT,
            link_url VARCHAR(500),
            meta JSONB NOT NULL DEFAULT '{}'::jsonb,
            read_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_notif_user_unread ON notifications(user_id, read_at, created_at)')


def downgrade() -> None:
    """Drop baseline tables."""
    for table in (
        'notifications',
        'task_automation_runs',
        'task_global_automations',
        'task_board_automations',
        'task_updates',
        'task_item_assignees',
        'task_items',
        'task_groups',
        'task_boards',
        'form_submission_jobs',
        'form_submissions',
        'form_definitions',
        'call_logs',
        'client_services',
        'active_clients',
        'client_profiles',
        'user_notification_settings',
        'users',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table}')
