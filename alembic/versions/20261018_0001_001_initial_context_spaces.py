"""Initial schema - context spaces, feature requests, embeddings, AI tables

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18

PostgreSQL only: enables pgvector, adds the native embedding column and an
HNSW cosine index next to the portable embedding_json copy.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Tenants
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), unique=True, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'organization_members',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), index=True, nullable=False),
        sa.Column('user_id', sa.String(36), index=True, nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_org_member'),
    )

    # Context space tree
    op.create_table(
        'context_spaces',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), index=True, nullable=False),
        sa.Column('parent_id', sa.String(36), sa.ForeignKey('context_spaces.id'), index=True, nullable=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('type', sa.String(50), nullable=True),
        sa.Column('created_by', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'feature_requests',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('context_space_id', sa.String(36), sa.ForeignKey('context_spaces.id', ondelete='CASCADE'), index=True, nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('tags', sa.JSON, nullable=True),
        sa.Column('source', sa.String(20), nullable=False, server_default='manual'),
        sa.Column('created_by', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # Embeddings: one row per (space, source type, source id)
    op.create_table(
        'embeddings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('context_space_id', sa.String(36), sa.ForeignKey('context_spaces.id', ondelete='CASCADE'), index=True, nullable=False),
        sa.Column('source_type', sa.String(30), nullable=False),
        sa.Column('source_id', sa.String(36), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('embedding_json', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('context_space_id', 'source_type', 'source_id', name='uq_embedding_source'),
    )
    op.create_index('ix_embeddings_source', 'embeddings', ['source_type', 'source_id'])
    op.execute("ALTER TABLE embeddings ADD COLUMN IF NOT EXISTS embedding vector(1536)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_embeddings_embedding_hnsw
        ON embeddings USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
    """)

    # Conversations
    op.create_table(
        'ai_conversations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), index=True, nullable=False),
        sa.Column('user_id', sa.String(36), index=True, nullable=False),
        sa.Column('context_space_id', sa.String(36), sa.ForeignKey('context_spaces.id', ondelete='SET NULL'), nullable=True),
        sa.Column('type', sa.String(20), nullable=False, server_default='scoped'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'ai_messages',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(36), sa.ForeignKey('ai_conversations.id', ondelete='CASCADE'), index=True, nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    # Usage ledger (append-only)
    op.create_table(
        'ai_usage_log',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('model_id', sa.String(100), nullable=False),
        sa.Column('capability', sa.String(20), nullable=False),
        sa.Column('tokens_input', sa.Integer, server_default='0'),
        sa.Column('tokens_output', sa.Integer, server_default='0'),
        sa.Column('cost', sa.Float, server_default='0'),
        sa.Column('credential_source', sa.String(20), server_default='system'),
        sa.Column('conversation_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_ai_usage_user_created', 'ai_usage_log', ['user_id', 'created_at'])
    op.create_index('ix_ai_usage_org_created', 'ai_usage_log', ['organization_id', 'created_at'])

    # Provider credentials and model catalogue
    op.create_table(
        'ai_provider_config',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id', ondelete='CASCADE'), index=True, nullable=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('api_key', sa.Text, nullable=True),
        sa.Column('base_url', sa.String(500), nullable=True),
        sa.Column('default_chat_model', sa.String(100), nullable=True),
        sa.Column('default_embed_model', sa.String(100), nullable=True),
        sa.Column('is_default', sa.Boolean, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'ai_user_credential',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), index=True, nullable=False),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('api_key', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'provider', name='uq_user_provider_credential'),
    )

    op.create_table(
        'ai_model_config',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('model_id', sa.String(100), nullable=False),
        sa.Column('capabilities', sa.JSON, nullable=True),
        sa.Column('cost_per_1k_input', sa.Float, server_default='0'),
        sa.Column('cost_per_1k_output', sa.Float, server_default='0'),
        sa.Column('context_window', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        sa.UniqueConstraint('provider', 'model_id', name='uq_model_config'),
    )


def downgrade() -> None:
    op.drop_table('ai_model_config')
    op.drop_table('ai_user_credential')
    op.drop_table('ai_provider_config')
    op.drop_index('ix_ai_usage_org_created', table_name='ai_usage_log')
    op.drop_index('ix_ai_usage_user_created', table_name='ai_usage_log')
    op.drop_table('ai_usage_log')
    op.drop_table('ai_messages')
    op.drop_table('ai_conversations')
    op.execute("DROP INDEX IF EXISTS ix_embeddings_embedding_hnsw")
    op.drop_index('ix_embeddings_source', table_name='embeddings')
    op.drop_table('embeddings')
    op.drop_table('feature_requests')
    op.drop_table('context_spaces')
    op.drop_table('organization_members')
    op.drop_table('organizations')
