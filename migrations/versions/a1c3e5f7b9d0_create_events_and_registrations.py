'''Create events and registrations tables'''
from alembic import op
import sqlalchemy as sa
from sqlalchemy.sql import func

# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b9d0'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_FILTER = sa.text("status IN ('registered', 'attended', 'no-show')")


def upgrade():
    op.create_table('events',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('organizer_id', sa.Integer(), nullable=False),
                    sa.Column('title', sa.String(length=200), nullable=False),
                    sa.Column('status', sa.String(length=20), nullable=False),
                    sa.Column('max_attendees', sa.Integer(), nullable=True),
                    sa.Column('current_attendees', sa.Integer(), nullable=False, server_default='0'),
                    sa.Column('price', sa.Integer(), nullable=False, server_default='0'),
                    sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
                    sa.Column('ledger_version', sa.Integer(), nullable=False, server_default='0'),
                    sa.Column('ledger_needs_audit', sa.Boolean(), nullable=False, server_default=sa.false()),
                    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=func.now(), nullable=False),
                    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=func.now(), nullable=False),
                    sa.CheckConstraint('current_attendees >= 0', name='ck_events_current_attendees'),
                    sa.CheckConstraint('price >= 0', name='ck_events_price'),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index('ix_events_organizer_id', 'events', ['organizer_id'])

    op.create_table('registrations',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('event_id', sa.Integer(), nullable=False),
                    sa.Column('attendee_id', sa.Integer(), nullable=False),
                    sa.Column('status', sa.String(length=20), nullable=False),
                    sa.Column('payment_status', sa.String(length=20), nullable=False),
                    sa.Column('payment_amount', sa.Integer(), nullable=False, server_default='0'),
                    sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
                    sa.Column('external_order_id', sa.String(length=255), nullable=True),
                    sa.Column('external_payment_id', sa.String(length=255), nullable=True),
                    sa.Column('attendee_email', sa.String(length=255), nullable=True),
                    sa.Column('attendee_name', sa.String(length=255), nullable=True),
                    sa.Column('registered_at', sa.TIMESTAMP(timezone=True), server_default=func.now(), nullable=False),
                    sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
                    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=func.now(), nullable=False),
                    sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
                    sa.PrimaryKeyConstraint('id'),
                    sqlite_autoincrement=True
                    )
    op.create_index('ix_registrations_external_order_id', 'registrations', ['external_order_id'])
    op.create_index('ix_registrations_attendee_status', 'registrations', ['attendee_id', 'status'])
    op.create_index('ix_registrations_event_status', 'registrations', ['event_id', 'status'])
    # One active registration per attendee per event; cancelled rows are history.
    op.create_index('uq_registrations_active_attendee', 'registrations',
                    ['event_id', 'attendee_id'], unique=True,
                    postgresql_where=ACTIVE_FILTER, sqlite_where=ACTIVE_FILTER)


def downgrade():
    op.drop_index('uq_registrations_active_attendee', table_name='registrations')
    op.drop_index('ix_registrations_event_status', table_name='registrations')
    op.drop_index('ix_registrations_attendee_status', table_name='registrations')
    op.drop_index('ix_registrations_external_order_id', table_name='registrations')
    op.drop_table('registrations')
    op.drop_index('ix_events_organizer_id', table_name='events')
    op.drop_table('events')
