"""Create billing tables

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2025-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f20b31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'properties',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_properties'),
    )

    op.create_table(
        'units',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('property_id', sa.Uuid(), nullable=False),
        sa.Column('unit_number', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_units'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], name='fk_units_property_id_properties'),
    )
    op.create_index('ix_units_property_id', 'units', ['property_id'])

    op.create_table(
        'tenants',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_tenants'),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], name='fk_tenants_unit_id_units'),
    )
    op.create_index('ix_tenants_unit_id', 'tenants', ['unit_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=True),
        sa.Column('property_id', sa.Uuid(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('payment_date', sa.DateTime(), nullable=False),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), nullable=True, server_default='paid'),
        sa.Column('payment_type', sa.String(20), nullable=True, server_default='rent'),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_payments_tenant_id_tenants'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], name='fk_payments_property_id_properties'),
    )
    op.create_index('ix_payments_tenant_id', 'payments', ['tenant_id'])
    op.create_index('ix_payments_property_id', 'payments', ['property_id'])
    op.create_index('ix_payments_payment_date', 'payments', ['payment_date'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('invoice_type', sa.String(50), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_invoices'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_invoices_tenant_id_tenants'),
    )
    op.create_index('ix_invoices_tenant_id', 'invoices', ['tenant_id'])

    # One bill per unit per billing month, billing_month is always the 1st
    op.create_table(
        'utility_bills',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('billing_month', sa.Date(), nullable=False),
        sa.Column('arrears_bf', sa.Float(), nullable=False, server_default='0'),
        sa.Column('previous_reading', sa.Float(), nullable=False, server_default='0'),
        sa.Column('current_reading', sa.Float(), nullable=False),
        sa.Column('units_consumed', sa.Float(), nullable=False, server_default='0'),
        sa.Column('rate', sa.Float(), nullable=False),
        sa.Column('total_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('recorded_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_utility_bills'),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], name='fk_utility_bills_unit_id_units'),
        sa.UniqueConstraint('unit_id', 'billing_month', name='uq_utility_bills_unit_id'),
        sa.CheckConstraint('arrears_bf >= 0', name='ck_utility_bills_arrears_non_negative'),
        sa.CheckConstraint('previous_reading >= 0', name='ck_utility_bills_previous_reading_non_negative'),
        sa.CheckConstraint('units_consumed >= 0', name='ck_utility_bills_units_consumed_non_negative'),
        sa.CheckConstraint('rate > 0', name='ck_utility_bills_rate_positive'),
    )
    op.create_index('ix_utility_bills_id', 'utility_bills', ['id'])
    op.create_index('ix_utility_bills_unit_id', 'utility_bills', ['unit_id'])
    op.create_index('ix_utility_bills_billing_month', 'utility_bills', ['billing_month'])


def downgrade() -> None:
    op.drop_table('utility_bills')
    op.drop_table('invoices')
    op.drop_table('payments')
    op.drop_table('tenants')
    op.drop_table('units')
    op.drop_table('properties')
