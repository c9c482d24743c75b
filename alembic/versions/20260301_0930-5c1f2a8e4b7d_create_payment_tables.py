"""create_payment_tables

Revision ID: 5c1f2a8e4b7d
Revises:
Create Date: 2026-03-01 09:30:12.418207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c1f2a8e4b7d'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create orders table
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False, comment='支付提供商: razorpay/stripe'),
        sa.Column('gateway_order_id', sa.String(length=100), nullable=False, comment='网关订单ID'),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='订单金额（最小货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 ISO-4217'),
        sa.Column('receipt', sa.String(length=100), nullable=False, comment='商户收据号'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='订单状态: CREATED/AUTHORIZED/PAID/FAILED'),
        sa.Column('customer_email', sa.String(length=255), nullable=False, comment='客户邮箱'),
        sa.Column('customer_name', sa.String(length=255), nullable=True, comment='客户姓名'),
        sa.Column('customer_phone', sa.String(length=20), nullable=True, comment='客户电话'),
        sa.Column('description', sa.String(length=500), nullable=True, comment='订单描述'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'], unique=False)
    op.create_index('ix_orders_provider', 'orders', ['provider'], unique=False)
    op.create_index('ix_orders_gateway_order_id', 'orders', ['gateway_order_id'], unique=True)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'], unique=False)

    # Create payments table
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False, comment='支付提供商'),
        sa.Column('gateway_payment_id', sa.String(length=100), nullable=True, comment='网关支付ID'),
        sa.Column('gateway_order_id', sa.String(length=100), nullable=False, comment='网关订单ID'),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='支付金额（最小货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码'),
        sa.Column('status', sa.String(length=30), nullable=False, comment='支付状态'),
        sa.Column('customer_email', sa.String(length=255), nullable=False, comment='客户邮箱'),
        sa.Column('description', sa.String(length=500), nullable=True, comment='支付描述'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('payment_method_type', sa.String(length=50), nullable=True, comment='支付方式'),
        sa.Column('card_brand', sa.String(length=50), nullable=True, comment='卡组织'),
        sa.Column('card_last4', sa.String(length=4), nullable=True, comment='卡号后四位'),
        sa.Column('refunded', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否全额退款'),
        sa.Column('refunded_amount', sa.BigInteger(), nullable=False, server_default='0', comment='已退款金额'),
        sa.Column('email_sent', sa.Boolean(), nullable=False, server_default=sa.false(), comment='通知邮件是否已发送'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_payment_id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'], unique=False)
    op.create_index('ix_payments_provider', 'payments', ['provider'], unique=False)
    op.create_index('ix_payments_gateway_order_id', 'payments', ['gateway_order_id'], unique=False)
    op.create_index('ix_payments_status', 'payments', ['status'], unique=False)
    op.create_index('ix_payments_customer_email', 'payments', ['customer_email'], unique=False)
    # 通知补偿扫描走该索引
    op.create_index('ix_payments_status_email_sent', 'payments', ['status', 'email_sent'], unique=False)
    op.create_index('ix_payments_created_at', 'payments', ['created_at'], unique=False)

    # Create refunds table
    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False, comment='关联的支付ID'),
        sa.Column('gateway_refund_id', sa.String(length=100), nullable=False, comment='网关退款ID'),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='退款金额（最小货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码'),
        sa.Column('reason', sa.String(length=255), nullable=True, comment='退款原因'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_refund_id'),
    )
    op.create_index('ix_refunds_id', 'refunds', ['id'], unique=False)
    op.create_index('ix_refunds_payment_id', 'refunds', ['payment_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_refunds_payment_id', table_name='refunds')
    op.drop_index('ix_refunds_id', table_name='refunds')
    op.drop_table('refunds')

    op.drop_index('ix_payments_created_at', table_name='payments')
    op.drop_index('ix_payments_status_email_sent', table_name='payments')
    op.drop_index('ix_payments_customer_email', table_name='payments')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_index('ix_payments_gateway_order_id', table_name='payments')
    op.drop_index('ix_payments_provider', table_name='payments')
    op.drop_index('ix_payments_id', table_name='payments')
    op.drop_table('payments')

    op.drop_index('ix_orders_customer_email', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_gateway_order_id', table_name='orders')
    op.drop_index('ix_orders_provider', table_name='orders')
    op.drop_index('ix_orders_id', table_name='orders')
    op.drop_table('orders')
