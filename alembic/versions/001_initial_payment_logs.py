"""Initial x402 paywall payment log table

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 10:00:00

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
    """Create x402_payment_logs"""

    op.create_table(
        'x402_payment_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('resource_id', sa.String(length=191), nullable=False),
        sa.Column('user_address', sa.String(length=255)),
        sa.Column('normalized_address', sa.String(length=255)),
        sa.Column('amount', sa.String(length=80), nullable=False),
        sa.Column('token_address', sa.String(length=255), nullable=False),
        sa.Column('network', sa.String(length=50), nullable=False),
        sa.Column('transaction_hash', sa.String(length=255)),
        sa.Column('payer_identifier', sa.String(length=255)),
        sa.Column('settlement_proof', sa.Text()),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('facilitator_signature', sa.Text()),
        sa.Column('facilitator_reference', sa.String(length=255)),
        sa.Column('status_code', sa.Integer()),
        sa.Column('error_code', sa.String(length=100)),
        sa.Column('facilitator_message', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'verified', 'failed')",
            name='ck_x402_payment_logs_status'
        ),
        sa.CheckConstraint(
            "payment_status <> 'verified' OR settlement_proof IS NOT NULL",
            name='ck_x402_payment_logs_verified_proof'
        ),
    )

    op.create_index('ix_x402_payment_logs_id', 'x402_payment_logs', ['id'])
    op.create_index('ix_x402_payment_logs_resource_id', 'x402_payment_logs', ['resource_id'])
    op.create_index('ix_x402_payment_logs_normalized_address', 'x402_payment_logs', ['normalized_address'])
    op.create_index('ix_x402_payment_logs_network', 'x402_payment_logs', ['network'])
    op.create_index('ix_x402_payment_logs_transaction_hash', 'x402_payment_logs', ['transaction_hash'])
    op.create_index('ix_x402_payment_logs_payment_status', 'x402_payment_logs', ['payment_status'])
    op.create_index('ix_x402_payment_logs_created_at', 'x402_payment_logs', ['created_at'])
    op.create_index(
        'ix_x402_payment_logs_paid_lookup',
        'x402_payment_logs',
        ['resource_id', 'normalized_address', 'payment_status']
    )


def downgrade() -> None:
    """Drop x402_payment_logs"""
    op.drop_table('x402_payment_logs')
