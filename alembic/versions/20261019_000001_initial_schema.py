"""Initial schema: merchants, plans, widget configs, conversations, documents, ingestion jobs

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00.000000

WHAT:
    Creates every StoreChat table:
    - merchants: installed shops with encrypted Admin API tokens
    - plans / shop_plans: subscription tiers and per-shop assignment
    - widget_configs: storefront widget settings (one per shop)
    - conversations / messages: storefront chat history
    - documents: catalog text for chat retrieval
    - ingestion_jobs: background catalog ingestion runs

WHY:
    Usage quotas count conversations and messages by timestamp, so the
    (shop, created_at) and (conversation_id, created_at) indexes back the
    hot paths of every storefront write.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261019_000001'
down_revision = None
branch_labels = None
depends_on = None


conversation_status = sa.Enum('active', 'closed', 'archived', name='conversationstatusenum')
message_role = sa.Enum('user', 'assistant', name='messageroleenum')
document_source = sa.Enum('product', 'collection', 'page', name='documentsourceenum')
ingestion_status = sa.Enum('pending', 'running', 'completed', 'failed', name='ingestionjobstatusenum')


def upgrade() -> None:
    op.create_table(
        'merchants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('access_token_enc', sa.Text(), nullable=True),
        sa.Column('scope', sa.String(), nullable=True),
        sa.Column('installed_at', sa.DateTime(), nullable=True),
        sa.Column('uninstalled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_merchants_shop', 'merchants', ['shop'], unique=True)

    op.create_table(
        'plans',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False, unique=True),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('max_conversations', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('max_messages', sa.Integer(), nullable=False, server_default='1000'),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'shop_plans',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('plans.id'), nullable=False),
        sa.Column('current_period_start', sa.DateTime(), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_shop_plans_shop', 'shop_plans', ['shop'], unique=True)

    op.create_table(
        'widget_configs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('color', sa.String(), nullable=True),
        sa.Column('greeting', sa.Text(), nullable=True),
        sa.Column('position', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('agent_name', sa.String(), nullable=True),
        sa.Column('agent_role', sa.String(), nullable=True),
        sa.Column('response_length', sa.String(), nullable=True),
        sa.Column('language', sa.String(), nullable=True),
        sa.Column('tone', sa.String(), nullable=True),
        sa.Column('avatar', sa.String(), nullable=True),
        sa.Column('color_scheme', sa.String(), nullable=True),
        sa.Column('start_color', sa.String(), nullable=True),
        sa.Column('end_color', sa.String(), nullable=True),
        sa.Column('chat_bg_color', sa.String(), nullable=True),
        sa.Column('font_family', sa.String(), nullable=True),
        sa.Column('font_color', sa.String(), nullable=True),
        sa.Column('open_by_default', sa.String(), nullable=True),
        sa.Column('is_pulsing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_widget_configs_shop', 'widget_configs', ['shop'], unique=True)

    op.create_table(
        'conversations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('shop', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('status', conversation_status, nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_conversations_shop', 'conversations', ['shop'])
    op.create_index('ix_conversations_shop_created', 'conversations', ['shop', 'created_at'])
    op.create_index('ix_conversations_shop_session', 'conversations', ['shop', 'session_id'])

    op.create_table(
        'messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'conversation_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('conversations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('role', message_role, nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('message_metadata', sa.JSON(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_messages_conversation_created', 'messages', ['conversation_id', 'created_at'])

    op.create_table(
        'documents',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('merchant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('merchants.id'), nullable=False),
        sa.Column('source', document_source, nullable=False),
        sa.Column('source_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('doc_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('merchant_id', 'source', 'source_id', name='uq_document_source'),
    )
    op.create_index('ix_documents_merchant_id', 'documents', ['merchant_id'])

    op.create_table(
        'ingestion_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('merchant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('merchants.id'), nullable=False),
        sa.Column('job_type', sa.String(), nullable=False, server_default='full'),
        sa.Column('status', ingestion_status, nullable=False, server_default='pending'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('products', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('collections', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_ingestion_jobs_merchant_id', 'ingestion_jobs', ['merchant_id'])


def downgrade() -> None:
    op.drop_index('ix_ingestion_jobs_merchant_id', table_name='ingestion_jobs')
    op.drop_table('ingestion_jobs')
    op.drop_index('ix_documents_merchant_id', table_name='documents')
    op.drop_table('documents')
    op.drop_index('ix_messages_conversation_created', table_name='messages')
    op.drop_table('messages')
    op.drop_index('ix_conversations_shop_session', table_name='conversations')
    op.drop_index('ix_conversations_shop_created', table_name='conversations')
    op.drop_index('ix_conversations_shop', table_name='conversations')
    op.drop_table('conversations')
    op.drop_index('ix_widget_configs_shop', table_name='widget_configs')
    op.drop_table('widget_configs')
    op.drop_index('ix_shop_plans_shop', table_name='shop_plans')
    op.drop_table('shop_plans')
    op.drop_table('plans')
    op.drop_index('ix_merchants_shop', table_name='merchants')
    op.drop_table('merchants')

    bind = op.get_bind()
    for enum_type in (ingestion_status, document_source, message_role, conversation_status):
        enum_type.drop(bind, checkfirst=True)
