"""Add webhook pipeline tables (asaas_webhook_events, assinaturas, pagamentos_assinaturas)

Revision ID: 7c2e91b04d1a
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c2e91b04d1a'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('asaas_webhook_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id')
    )
    op.create_index('ix_asaas_webhook_events_status', 'asaas_webhook_events', ['status'])

    op.create_table('assinaturas',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_ref', sa.String(length=255), nullable=False),
        sa.Column('plano_id', sa.String(length=36), nullable=False),
        sa.Column('cliente_id', sa.String(length=36), nullable=False),
        sa.Column('unidade_id', sa.String(length=36), nullable=False),
        sa.Column('inicio', sa.Date(), nullable=True),
        sa.Column('fim', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='ativa'),
        sa.Column('needs_reconciliation', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_ref')
    )
    op.create_index('ix_assinaturas_status', 'assinaturas', ['status'])
    op.create_index('ix_assinaturas_needs_reconciliation', 'assinaturas', ['needs_reconciliation'])

    op.create_table('pagamentos_assinaturas',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_payment_ref', sa.String(length=255), nullable=False),
        sa.Column('assinatura_id', sa.String(length=36), nullable=True),
        sa.Column('valor', sa.Numeric(precision=12, scale=2), nullable=False, server_default=sa.text('0')),
        sa.Column('metodo', sa.String(length=20), nullable=False, server_default='cartao'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pago'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['assinatura_id'], ['assinaturas.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_payment_ref')
    )


def downgrade():
    op.drop_table('pagamentos_assinaturas')
    op.drop_index('ix_assinaturas_needs_reconciliation', table_name='assinaturas')
    op.drop_index('ix_assinaturas_status', table_name='assinaturas')
    op.drop_table('assinaturas')
    op.drop_index('ix_asaas_webhook_events_status', table_name='asaas_webhook_events')
    op.drop_table('asaas_webhook_events')
