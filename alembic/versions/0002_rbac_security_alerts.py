"""rbac, account security, alerts

Revision ID: 0002_rbac_security_alerts
Revises: 0001_init
Create Date: 2025-01-20
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_rbac_security_alerts"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.add_column("users", sa.Column("email_verified", sa.DateTime(timezone=True), nullable=True))
  op.add_column("users", sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default="0"))
  op.add_column("users", sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True))
  op.add_column("users", sa.Column("reset_token", sa.String(), nullable=True))
  op.add_column("users", sa.Column("reset_token_expires_at", sa.DateTime(timezone=True), nullable=True))
  op.add_column("users", sa.Column("verification_token", sa.String(), nullable=True))
  op.add_column("users", sa.Column("verification_token_expires_at", sa.DateTime(timezone=True), nullable=True))
  op.create_index("ix_users_reset_token", "users", ["reset_token"], unique=False)
  op.create_index("ix_users_verification_token", "users", ["verification_token"], unique=False)
  # Accounts that predate verification are treated as verified.
  op.execute(sa.text("UPDATE users SET email_verified = created_at WHERE email_verified IS NULL"))
  op.alter_column("users", "failed_login_attempts", server_default=None)

  op.create_table(
    "roles",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("name", name="ux_roles_name"),
  )

  op.create_table(
    "permissions",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("resource", sa.String(), nullable=False),
    sa.Column("action", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("name", name="ux_permissions_name"),
    sa.UniqueConstraint("resource", "action", name="ux_permissions_resource_action"),
  )

  op.create_table(
    "role_permissions",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("role_id", sa.String(36), sa.ForeignKey("roles.id"), nullable=False),
    sa.Column("permission_id", sa.String(36), sa.ForeignKey("permissions.id"), nullable=False),
    sa.UniqueConstraint("role_id", "permission_id", name="ux_role_permissions_role_permission"),
  )
  op.create_index("ix_role_permissions_role_id", "role_permissions", ["role_id"], unique=False)

  op.create_table(
    "user_role_assignments",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("role_id", sa.String(36), sa.ForeignKey("roles.id"), nullable=False),
    sa.Column("assigned_by", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_user_role_assignments_user_id", "user_role_assignments", ["user_id"], unique=False)

  op.create_table(
    "notifications",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id"), nullable=True),
    sa.Column("type", sa.String(), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("message", sa.Text(), nullable=False),
    sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("is_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
  op.create_index(
    "ux_notifications_unread_user_task_type",
    "notifications",
    ["user_id", "task_id", "type"],
    unique=True,
    postgresql_where=sa.text("is_read = false"),
  )

  op.create_table(
    "alert_preferences",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("type", sa.String(), nullable=False, server_default="deadline"),
    sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    sa.Column("advance_days", sa.Integer(), nullable=False, server_default="1"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_alert_preferences_user_id", "alert_preferences", ["user_id"], unique=False)


def downgrade() -> None:
  op.drop_table("alert_preferences")
  op.drop_index("ux_notifications_unread_user_task_type", table_name="notifications")
  op.drop_table("notifications")
  op.drop_table("user_role_assignments")
  op.drop_table("role_permissions")
  op.drop_table("permissions")
  op.drop_table("roles")
  op.drop_index("ix_users_verification_token", table_name="users")
  op.drop_index("ix_users_reset_token", table_name="users")
  for col in (
    "verification_token_expires_at",
    "verification_token",
    "reset_token_expires_at",
    "reset_token",
    "locked_until",
    "failed_login_attempts",
    "email_verified",
  ):
    op.drop_column("users", col)
