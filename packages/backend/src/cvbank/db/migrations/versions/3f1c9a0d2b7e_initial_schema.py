"""Initial schema: identities, users and the profile sections

Learn: Identities and users are separate tables sharing one id. Email
uniqueness is case-insensitive (unique index on lower(email)) on both.
Every section table references users.id with ON DELETE CASCADE, so
removing a user removes their whole profile.

Revision ID: 3f1c9a0d2b7e
Revises:
Create Date: 2026-10-19 09:12:44.118302
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a0d2b7e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _owned_columns(unique_owner: bool = False) -> list:
    return [
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'user_id', sa.String(36),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False, unique=unique_owner,
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ─── Identity provider side ──────────────────────────
    op.create_table(
        'identities',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('session_epoch', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        'uq_identities_email_lower', 'identities', [sa.text('lower(email)')], unique=True
    )

    # ─── Users ───────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('uq_users_email_lower', 'users', [sa.text('lower(email)')], unique=True)

    # ─── Singletons ──────────────────────────────────────
    op.create_table(
        'personal_data',
        *_owned_columns(unique_owner=True),
        sa.Column('full_name', sa.String(200)),
        sa.Column('email', sa.String(255)),
        sa.Column('phone', sa.String(50)),
        sa.Column('address', sa.String(255)),
        sa.Column('city', sa.String(100)),
        sa.Column('country', sa.String(100)),
        sa.Column('summary', sa.Text()),
    )
    op.create_table(
        'user_settings',
        *_owned_columns(unique_owner=True),
        sa.Column('notifications_new_opportunities', sa.Boolean()),
    )

    # ─── Collections ─────────────────────────────────────
    op.create_table(
        'professional_experiences',
        *_owned_columns(),
        sa.Column('company', sa.String(200), nullable=False),
        sa.Column('role', sa.String(200), nullable=False),
        sa.Column('country', sa.String(100)),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('is_current', sa.Boolean()),
        sa.Column('description', sa.Text()),
    )
    op.create_table(
        'academic_records',
        *_owned_columns(),
        sa.Column('institution', sa.String(200), nullable=False),
        sa.Column('degree', sa.String(200), nullable=False),
        sa.Column('field_of_study', sa.String(200)),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('in_progress', sa.Boolean()),
        sa.Column('description', sa.Text()),
    )
    op.create_table(
        'languages',
        *_owned_columns(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('level', sa.String(20), nullable=False),
    )
    op.create_table(
        'tools',
        *_owned_columns(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('category', sa.String(100)),
    )
    op.create_table(
        'profile_references',
        *_owned_columns(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('relationship', sa.String(100)),
        sa.Column('company', sa.String(200)),
        sa.Column('email', sa.String(255)),
        sa.Column('phone', sa.String(50)),
    )

    for table in (
        'professional_experiences', 'academic_records', 'languages', 'tools',
        'profile_references',
    ):
        op.create_index(f'ix_{table}_user_id', table, ['user_id'])


def downgrade() -> None:
    for table in (
        'profile_references', 'tools', 'languages', 'academic_records',
        'professional_experiences',
    ):
        op.drop_index(f'ix_{table}_user_id', table_name=table)
        op.drop_table(table)
    op.drop_table('user_settings')
    op.drop_table('personal_data')
    op.drop_index('uq_users_email_lower', table_name='users')
    op.drop_table('users')
    op.drop_index('uq_identities_email_lower', table_name='identities')
    op.drop_table('identities')
