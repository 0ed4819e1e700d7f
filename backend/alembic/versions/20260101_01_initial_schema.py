"""initial schema: tenancy, inventory ledger, lots, BOM, alerts

Revision ID: 20260101_01
Revises:
Create Date: 2026-01-01

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20260101_01'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ===== EMPRESAS Y USUARIOS =====
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False, unique=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_companies_id', 'companies', ['id'])

    op.create_table(
        'brands',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('company_id', 'name', name='uq_brand_company_name'),
    )
    op.create_index('ix_brands_company_id', 'brands', ['company_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('password_hash', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(200), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'user_companies',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), primary_key=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='viewer'),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    # ===== UBICACIONES Y COMPONENTES =====
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('type', sa.String(30), nullable=False, server_default='warehouse'),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('company_id', 'name', name='uq_location_company_name'),
    )
    op.create_index('ix_locations_company_id', 'locations', ['company_id'])

    op.create_table(
        'components',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('brand_id', sa.Integer(), sa.ForeignKey('brands.id'), nullable=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('sku_code', sa.String(100), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('unit_of_measure', sa.String(30), nullable=False, server_default='each'),
        sa.Column('cost_per_unit', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('reorder_point', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lead_time_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('company_id', 'sku_code', name='uq_component_company_sku'),
    )
    op.create_index('ix_components_company_id', 'components', ['company_id'])
    op.create_index('ix_components_brand_id', 'components', ['brand_id'])

    # ===== SKUs Y BOM =====
    op.create_table(
        'skus',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('brand_id', sa.Integer(), sa.ForeignKey('brands.id'), nullable=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('internal_code', sa.String(100), nullable=False),
        sa.Column('sales_channel', sa.String(30), nullable=False, server_default='Generic'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('company_id', 'internal_code', name='uq_sku_company_code'),
    )
    op.create_index('ix_skus_company_id', 'skus', ['company_id'])
    op.create_index('ix_skus_brand_id', 'skus', ['brand_id'])

    op.create_table(
        'bom_versions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('version_name', sa.String(100), nullable=False),
        sa.Column('state', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('effective_start_date', sa.DateTime(), nullable=True),
        sa.Column('effective_end_date', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_bom_versions_company_id', 'bom_versions', ['company_id'])
    op.create_index('ix_bom_versions_sku_id', 'bom_versions', ['sku_id'])
    # Una sola versión activa por SKU
    op.create_index(
        'uq_bom_version_active_per_sku',
        'bom_versions',
        ['sku_id'],
        unique=True,
        sqlite_where=sa.text('is_active = 1'),
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'bom_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bom_version_id', sa.Integer(), sa.ForeignKey('bom_versions.id'), nullable=False),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('components.id'), nullable=False),
        sa.Column('quantity_per_unit', sa.Numeric(12, 4), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.UniqueConstraint('bom_version_id', 'component_id', name='uq_bom_line_component'),
    )
    op.create_index('ix_bom_lines_bom_version_id', 'bom_lines', ['bom_version_id'])
    op.create_index('ix_bom_lines_component_id', 'bom_lines', ['component_id'])

    # ===== LOTES =====
    op.create_table(
        'lots',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('components.id'), nullable=False),
        sa.Column('lot_number', sa.String(100), nullable=False),
        sa.Column('received_quantity', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('supplier', sa.String(200), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('component_id', 'lot_number', name='uq_lot_component_number'),
    )
    op.create_index('ix_lots_company_id', 'lots', ['company_id'])
    op.create_index('ix_lots_component_id', 'lots', ['component_id'])

    op.create_table(
        'lot_balances',
        sa.Column('lot_id', sa.Integer(), sa.ForeignKey('lots.id'), primary_key=True),
        sa.Column('quantity', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    # ===== LEDGER =====
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('from_location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('to_location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=True),
        sa.Column('bom_version_id', sa.Integer(), sa.ForeignKey('bom_versions.id'), nullable=True),
        sa.Column('units_built', sa.Numeric(12, 4), nullable=True),
        sa.Column('unit_bom_cost', sa.Numeric(12, 4), nullable=True),
        sa.Column('total_bom_cost', sa.Numeric(14, 4), nullable=True),
        sa.Column('sales_channel', sa.String(30), nullable=True),
        sa.Column('supplier', sa.String(200), nullable=True),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_transactions_company_id', 'transactions', ['company_id'])
    op.create_index('ix_transactions_type', 'transactions', ['type'])
    op.create_index('ix_transactions_sku_id', 'transactions', ['sku_id'])
    op.create_index('ix_transactions_company_date', 'transactions', ['company_id', 'date'])

    op.create_table(
        'transaction_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('transaction_id', sa.Integer(), sa.ForeignKey('transactions.id'), nullable=False),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('components.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('lot_id', sa.Integer(), sa.ForeignKey('lots.id'), nullable=True),
        sa.Column('quantity_change', sa.Numeric(12, 4), nullable=False),
        sa.Column('cost_per_unit', sa.Numeric(12, 4), nullable=True),
    )
    op.create_index('ix_transaction_lines_transaction_id', 'transaction_lines', ['transaction_id'])
    op.create_index('ix_transaction_lines_component_id', 'transaction_lines', ['component_id'])
    op.create_index('ix_transaction_lines_lot_id', 'transaction_lines', ['lot_id'])
    op.create_index('ix_transaction_lines_component_location', 'transaction_lines', ['component_id', 'location_id'])

    op.create_table(
        'finished_goods_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('transaction_id', sa.Integer(), sa.ForeignKey('transactions.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('quantity_change', sa.Numeric(12, 4), nullable=False),
        sa.Column('cost_per_unit', sa.Numeric(12, 4), nullable=True),
    )
    op.create_index('ix_finished_goods_lines_transaction_id', 'finished_goods_lines', ['transaction_id'])
    op.create_index('ix_finished_goods_lines_sku_id', 'finished_goods_lines', ['sku_id'])

    # ===== ALERTAS =====
    op.create_table(
        'alert_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('slack_webhook_url', sa.String(500), nullable=True),
        sa.Column('email_addresses', sa.JSON(), nullable=True),
        sa.Column('enable_slack', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('enable_email', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('alert_mode', sa.String(30), nullable=False, server_default='daily_digest'),
        sa.Column('last_digest_sent', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_alert_configs_company_id', 'alert_configs', ['company_id'], unique=True)

    op.create_table(
        'component_alert_states',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('components.id'), nullable=False),
        sa.Column('last_status', sa.String(20), nullable=False, server_default='ok'),
        sa.Column('last_alert_sent', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_component_alert_states_company_id', 'component_alert_states', ['company_id'])
    op.create_index('ix_component_alert_states_component_id', 'component_alert_states', ['component_id'], unique=True)


def downgrade() -> None:
    op.drop_table('component_alert_states')
    op.drop_table('alert_configs')
    op.drop_table('finished_goods_lines')
    op.drop_table('transaction_lines')
    op.drop_table('transactions')
    op.drop_table('lot_balances')
    op.drop_table('lots')
    op.drop_table('bom_lines')
    op.drop_index('uq_bom_version_active_per_sku', table_name='bom_versions')
    op.drop_table('bom_versions')
    op.drop_table('skus')
    op.drop_table('components')
    op.drop_table('locations')
    op.drop_table('user_companies')
    op.drop_table('users')
    op.drop_table('brands')
    op.drop_table('companies')
