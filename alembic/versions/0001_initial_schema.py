"""Initial schema: contacts, orders, messages, internal messages, automations

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'contacts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('channel_user_id', sa.String(length=64), nullable=True),
        sa.Column('partner_external_id', sa.String(length=255), nullable=True),
        sa.Column('telegram_username', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='active'),
        sa.Column('manager_id', sa.Integer(), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_contacts_id'), 'contacts', ['id'], unique=False)
    op.create_index(op.f('ix_contacts_phone'), 'contacts', ['phone'], unique=False)
    op.create_index(op.f('ix_contacts_email'), 'contacts', ['email'], unique=False)
    op.create_index(op.f('ix_contacts_channel_user_id'), 'contacts', ['channel_user_id'], unique=True)
    op.create_index(op.f('ix_contacts_partner_external_id'), 'contacts', ['partner_external_id'], unique=False)

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('correlation_id', sa.BigInteger(), nullable=True),
        sa.Column('partner_id', sa.String(length=255), nullable=True),
        sa.Column('contact_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='unsorted'),
        sa.Column('partner_status_id', sa.String(length=100), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('manager_id', sa.Integer(), nullable=True),
        sa.Column('source', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_orders_id'), 'orders', ['id'], unique=False)
    op.create_index(op.f('ix_orders_correlation_id'), 'orders', ['correlation_id'], unique=True)
    op.create_index(op.f('ix_orders_partner_id'), 'orders', ['partner_id'], unique=False)
    op.create_index(op.f('ix_orders_contact_id'), 'orders', ['contact_id'], unique=False)
    op.create_index(op.f('ix_orders_status'), 'orders', ['status'], unique=False)

    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('correlation_id', sa.BigInteger(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('author_kind', sa.String(length=20), nullable=False, server_default='client'),
        sa.Column('message_kind', sa.String(length=20), nullable=False, server_default='text'),
        sa.Column('chat_message_id', sa.BigInteger(), nullable=True),
        sa.Column('partner_message_id', sa.String(length=255), nullable=True),
        sa.Column('reply_to_chat_message_id', sa.BigInteger(), nullable=True),
        sa.Column('delivery_status', sa.String(length=20), nullable=False, server_default='delivered'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('reactions', sa.JSON(), nullable=True),
        sa.Column('author_name', sa.String(length=255), nullable=True),
        sa.Column('manager_id', sa.Integer(), nullable=True),
        sa.Column('voice_duration', sa.Integer(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_messages_id'), 'messages', ['id'], unique=False)
    op.create_index(op.f('ix_messages_correlation_id'), 'messages', ['correlation_id'], unique=False)
    op.create_index(op.f('ix_messages_chat_message_id'), 'messages', ['chat_message_id'], unique=False)
    op.create_index(op.f('ix_messages_partner_message_id'), 'messages', ['partner_message_id'], unique=False)
    op.create_index(op.f('ix_messages_created_at'), 'messages', ['created_at'], unique=False)

    op.create_table(
        'order_messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('message_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'message_id', name='uq_order_messages_order_message')
    )
    op.create_index(op.f('ix_order_messages_id'), 'order_messages', ['id'], unique=False)
    op.create_index(op.f('ix_order_messages_order_id'), 'order_messages', ['order_id'], unique=False)
    op.create_index(op.f('ix_order_messages_message_id'), 'order_messages', ['message_id'], unique=False)

    op.create_table(
        'internal_messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('correlation_id', sa.BigInteger(), nullable=True),
        sa.Column('sender_id', sa.Integer(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reply_to_id', sa.Integer(), nullable=True),
        sa.Column('attachment_url', sa.Text(), nullable=True),
        sa.Column('attachment_type', sa.String(length=20), nullable=True),
        sa.Column('attachment_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['reply_to_id'], ['internal_messages.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_internal_messages_id'), 'internal_messages', ['id'], unique=False)
    op.create_index(op.f('ix_internal_messages_order_id'), 'internal_messages', ['order_id'], unique=False)
    op.create_index(op.f('ix_internal_messages_correlation_id'), 'internal_messages', ['correlation_id'], unique=False)
    op.create_index(op.f('ix_internal_messages_created_at'), 'internal_messages', ['created_at'], unique=False)

    op.create_table(
        'automations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('trigger_type', sa.String(length=100), nullable=False),
        sa.Column('trigger_conditions', sa.JSON(), nullable=True),
        sa.Column('action_type', sa.String(length=100), nullable=False),
        sa.Column('action_config', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_automations_id'), 'automations', ['id'], unique=False)
    op.create_index(op.f('ix_automations_trigger_type'), 'automations', ['trigger_type'], unique=False)


def downgrade() -> None:
    op.drop_table('automations')
    op.drop_table('internal_messages')
    op.drop_table('order_messages')
    op.drop_table('messages')
    op.drop_table('orders')
    op.drop_table('contacts')
