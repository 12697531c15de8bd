"""initial

Revision ID: 001_initial
Revises: 
Create Date: 2025-01-15 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ocr_columns():
    return [
        sa.Column('ocr_raw_json', sa.Text(), nullable=True),
        sa.Column('extracted_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('extracted_date', sa.Date(), nullable=True),
        sa.Column('extracted_provider', sa.String(length=255), nullable=True),
        sa.Column('ocr_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ocr_error_message', sa.Text(), nullable=True),
    ]


def upgrade() -> None:
    # Users
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('avatar', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    # Incoming Files
    op.create_table('incoming_files',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('filename', sa.String(length=500), nullable=False),
        sa.Column('file_path', sa.String(length=1000), nullable=False),
        sa.Column('upload_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('checksum', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_ocr_columns(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_incoming_files_user_id'), 'incoming_files', ['user_id'], unique=False)
    op.create_index(op.f('ix_incoming_files_checksum'), 'incoming_files', ['checksum'], unique=False)
    op.create_index(op.f('ix_incoming_files_status'), 'incoming_files', ['status'], unique=False)

    # Bills
    op.create_table('bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('filename', sa.String(length=500), nullable=False),
        sa.Column('file_path', sa.String(length=1000), nullable=False),
        sa.Column('upload_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('checksum', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_ocr_columns(),
        sa.Column('original_incoming_file_id', sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bills_user_id'), 'bills', ['user_id'], unique=False)
    op.create_index(op.f('ix_bills_checksum'), 'bills', ['checksum'], unique=False)
    op.create_index(op.f('ix_bills_original_incoming_file_id'), 'bills', ['original_incoming_file_id'], unique=False)

    # Receipts
    op.create_table('receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=True),
        sa.Column('filename', sa.String(length=500), nullable=True),
        sa.Column('file_path', sa.String(length=1000), nullable=True),
        sa.Column('upload_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('checksum', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_ocr_columns(),
        sa.Column('original_incoming_file_id', sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_receipts_user_id'), 'receipts', ['user_id'], unique=False)
    op.create_index(op.f('ix_receipts_checksum'), 'receipts', ['checksum'], unique=False)
    op.create_index(op.f('ix_receipts_original_incoming_file_id'), 'receipts', ['original_incoming_file_id'], unique=False)

    # OCR Attempts (subject is entity_type + entity_id, no FK on purpose)
    op.create_table('ocr_attempts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=20), nullable=False),
        sa.Column('entity_id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('attempt_timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('ocr_engine_used', sa.String(length=50), nullable=False),
        sa.Column('processing_status', sa.String(length=20), nullable=False),
        sa.Column('extracted_data_json', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('raw_response', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_ocr_attempts_entity', 'ocr_attempts', ['entity_type', 'entity_id'], unique=False)
    op.create_index(op.f('ix_ocr_attempts_user_id'), 'ocr_attempts', ['user_id'], unique=False)
    op.create_index(op.f('ix_ocr_attempts_attempt_timestamp'), 'ocr_attempts', ['attempt_timestamp'], unique=False)
    op.create_index(op.f('ix_ocr_attempts_processing_status'), 'ocr_attempts', ['processing_status'], unique=False)


def downgrade() -> None:
    op.drop_table('ocr_attempts')
    op.drop_table('receipts')
    op.drop_table('bills')
    op.drop_table('incoming_files')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
