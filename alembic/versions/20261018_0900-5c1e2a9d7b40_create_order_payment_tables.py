"""create_order_payment_tables

Revision ID: 5c1e2a9d7b40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c1e2a9d7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=64), nullable=False, comment='订单ID'),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='下单用户ID（游客为空）'),
        sa.Column('status', sa.String(length=40), nullable=False, comment='订单状态'),
        sa.Column('subtotal_excl_vat', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='不含税小计'),
        sa.Column('subtotal_incl_vat', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='含税小计'),
        sa.Column('delivery_fee', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='运费'),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='应付总额'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        comment='订单表'
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False, comment='商品ID'),
        sa.Column('product_title', sa.String(length=255), nullable=True, comment='商品名称快照'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='数量'),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False, comment='下单时单价'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)

    op.create_table(
        'delivery_infos',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('recipient_name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('province_city', sa.String(length=120), nullable=False),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('is_rush', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('rush_window_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rush_window_end', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_delivery_infos_order_id', 'delivery_infos', ['order_id'], unique=True)

    op.create_table(
        'order_status_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('from_status', sa.String(length=40), nullable=False),
        sa.Column('to_status', sa.String(length=40), nullable=False),
        sa.Column('actor', sa.String(length=64), nullable=False, comment='操作者：system/customer/manager 等'),
        sa.Column('reason', sa.Text(), nullable=True, comment='原因（拒单必填）'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_status_events_order_created', 'order_status_events', ['order_id', 'created_at'], unique=False)

    op.create_table(
        'payment_methods',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('method_type', sa.String(length=40), nullable=False, comment='CREDIT_CARD / DOMESTIC_DEBIT_CARD'),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='所属用户（游客为空）'),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_methods_user_id', 'payment_methods', ['user_id'], unique=False)

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False, comment='订单ID'),
        sa.Column('payment_method_id', sa.String(length=64), nullable=True),
        sa.Column('transaction_type', sa.String(length=20), nullable=False, server_default='PAYMENT', comment='PAYMENT / REFUND'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='交易金额'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING', comment='PENDING/SUCCESS/FAILED'),
        sa.Column('gateway_ref', sa.String(length=128), nullable=True, comment='网关交易参考号 vnp_TxnRef'),
        sa.Column('external_transaction_id', sa.String(length=128), nullable=True, comment='网关交易号 vnp_TransactionNo'),
        sa.Column('content', sa.Text(), nullable=True, comment='网关结果摘要'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='终态时间'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['payment_method_id'], ['payment_methods.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_ref'),
        comment='支付交易表，回调对账以 gateway_ref 定位交易'
    )
    op.create_index('ix_payment_transactions_order_id', 'payment_transactions', ['order_id'], unique=False)
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'], unique=False)
    op.create_index('ix_payment_transactions_created_at', 'payment_transactions', ['created_at'], unique=False)

    # 每个订单最多一笔 PENDING 交易
    op.create_index(
        'uq_payment_transactions_active_order',
        'payment_transactions',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )


def downgrade() -> None:
    op.drop_index('uq_payment_transactions_active_order', table_name='payment_transactions')
    op.drop_table('payment_transactions')
    op.drop_table('payment_methods')
    op.drop_table('order_status_events')
    op.drop_table('delivery_infos')
    op.drop_table('order_items')
    op.drop_table('orders')
