"""RFx sourcing tables and request award tracking

Revision ID: 001_rfx_sourcing
Revises:
Create Date: 2026-10-19

Creates suppliers, rfx_events, rfx_responses, purchase_orders and
request_logs. The users and requests tables are created only when the
purchasing application has not created them already; an existing requests
table gets the award-tracking columns added. Tables this revision created
itself are recorded in rfx_sourcing_owned_tables so downgrade() drops
exactly those.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_rfx_sourcing'
down_revision = None
branch_labels = None
depends_on = None

AWARD_COLUMNS = (
    ('awarded_supplier_id', sa.Integer()),
    ('awarded_rfx_id', sa.Integer()),
    ('awarded_rfx_response_id', sa.Integer()),
    ('purchase_order_id', sa.Integer()),
    ('purchase_order_number', sa.Text()),
    ('sourcing_status', sa.Text()),
    ('awarded_at', sa.DateTime(timezone=True)),
    ('po_issued_at', sa.DateTime(timezone=True)),
)

OWNED_TABLES = 'rfx_sourcing_owned_tables'


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    existing = set(inspector.get_table_names())
    created = []

    if 'users' not in existing:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(255)),
            sa.Column('email', sa.String(255), unique=True),
            sa.Column('role', sa.String(100)),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        created.append('users')

    if 'requests' not in existing:
        op.create_table(
            'requests',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('title', sa.Text()),
            sa.Column('justification', sa.Text()),
            sa.Column('requester_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
            sa.Column('status', sa.String(50), nullable=False, server_default='pending'),
            sa.Column('estimated_cost', sa.Float()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            *[sa.Column(name, type_) for name, type_ in AWARD_COLUMNS],
        )
        created.append('requests')
    else:
        present = {c['name'] for c in inspector.get_columns('requests')}
        for name, type_ in AWARD_COLUMNS:
            if name not in present:
                op.add_column('requests', sa.Column(name, type_, nullable=True))

    op.create_table(
        'request_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.Integer(), sa.ForeignKey('requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('actor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('comments', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_request_logs_request_id', 'request_logs', ['request_id'])

    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('contact_email', sa.Text()),
        sa.Column('contact_phone', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('suppliers_name_ci_idx', 'suppliers', [sa.text('lower(name)')], unique=True)

    op.create_table(
        'rfx_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('rfx_type', sa.String(10), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('request_id', sa.Integer(), sa.ForeignKey('requests.id', ondelete='SET NULL')),
        sa.Column('due_date', sa.DateTime(timezone=True)),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_rfx_events_request_id', 'rfx_events', ['request_id'])

    op.create_table(
        'rfx_responses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rfx_id', sa.Integer(), sa.ForeignKey('rfx_events.id', ondelete='CASCADE'), nullable=False),
        sa.Column('request_id', sa.Integer(), sa.ForeignKey('requests.id', ondelete='SET NULL')),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('suppliers.id')),
        sa.Column('submitted_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('bid_amount', sa.Float()),
        sa.Column('notes', sa.Text()),
        sa.Column('response_data', sa.JSON()),
        sa.Column('status', sa.String(20), nullable=False, server_default='submitted'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('rfx_responses_rfx_id_idx', 'rfx_responses', ['rfx_id'])

    op.create_table(
        'purchase_orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.Integer(), sa.ForeignKey('requests.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('rfx_id', sa.Integer(), sa.ForeignKey('rfx_events.id', ondelete='SET NULL')),
        sa.Column('rfx_response_id', sa.Integer(), sa.ForeignKey('rfx_responses.id', ondelete='SET NULL')),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('suppliers.id')),
        sa.Column('po_number', sa.Text(), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='issued'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('total_amount', sa.Float()),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    owned = op.create_table(
        OWNED_TABLES,
        sa.Column('name', sa.String(64), primary_key=True),
    )
    if created:
        op.bulk_insert(owned, [{'name': name} for name in created])


def downgrade() -> None:
    bind = op.get_bind()
    owned = set(bind.execute(sa.text(f'SELECT name FROM {OWNED_TABLES}')).scalars())

    op.drop_table('purchase_orders')
    op.drop_index('rfx_responses_rfx_id_idx', table_name='rfx_responses')
    op.drop_table('rfx_responses')
    op.drop_index('ix_rfx_events_request_id', table_name='rfx_events')
    op.drop_table('rfx_events')
    op.drop_index('suppliers_name_ci_idx', table_name='suppliers')
    op.drop_table('suppliers')
    op.drop_index('ix_request_logs_request_id', table_name='request_logs')
    op.drop_table('request_logs')

    if 'requests' in owned:
        op.drop_table('requests')
    else:
        with op.batch_alter_table('requests') as batch:
            for name, _ in reversed(AWARD_COLUMNS):
                batch.drop_column(name)
    if 'users' in owned:
        op.drop_table('users')

    op.drop_table(OWNED_TABLES)
