# ruo/models.py: tables (SQLAlchemy Core), créées au démarrage
from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, MetaData,
    String, Table, Text, UniqueConstraint,
)

metadata = MetaData()

app_users = Table(
    "app_users", metadata,
    Column("id", String(64), primary_key=True),
    Column("display_name", String(255), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=True),
)

authorities = Table(
    "authorities", metadata,
    Column("id", Integer, primary_key=True),
    Column("postal_code", String(10), nullable=False),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=True),
    Column("latitude", Float, nullable=True),
    Column("longitude", Float, nullable=True),
    Column("personal_email", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint("postal_code", name="uq_authorities_postal_code"),
)

reports = Table(
    "reports", metadata,
    Column("id", Integer, primary_key=True),
    Column("case_number", String(50), nullable=False),
    Column("user_id", String(64), ForeignKey("app_users.id", ondelete="CASCADE"), nullable=False),
    Column("authority_id", Integer, ForeignKey("authorities.id", ondelete="SET NULL"), nullable=True),
    Column("status", String(20), nullable=False, default="draft"),
    Column("violation_type", String(255), nullable=True),
    Column("notes", Text, nullable=True),
    Column("location_address", Text, nullable=True),
    Column("location_zip", String(10), nullable=True),
    Column("location_lat", Float, nullable=True),
    Column("location_lng", Float, nullable=True),
    Column("is_public", Boolean, nullable=False, default=True),
    Column("hide_username", Boolean, nullable=False, default=False),
    Column("submitted_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint("case_number", name="uq_reports_case_number"),
    Index("idx_reports_user_id", "user_id"),
    Index("idx_reports_status", "status"),
    Index("idx_reports_location", "location_lat", "location_lng"),
)

evidence = Table(
    "evidence", metadata,
    Column("id", Integer, primary_key=True),
    Column("report_id", Integer, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False),
    Column("filename", String(255), nullable=False),
    Column("filepath", String(500), nullable=False),
    Column("mime_type", String(100), nullable=True),
    Column("media_kind", String(10), nullable=False, default="image"),
    Column("file_size", Integer, nullable=True),
    Column("lat", Float, nullable=True),
    Column("lng", Float, nullable=True),
    Column("taken_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=True),
    Index("idx_evidence_report_id", "report_id"),
)

status_history = Table(
    "status_history", metadata,
    Column("id", Integer, primary_key=True),
    Column("report_id", Integer, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False),
    Column("old_status", String(20), nullable=True),
    Column("new_status", String(20), nullable=False),
    Column("changed_by", String(64), nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=True),
    Index("idx_status_history_report_id", "report_id"),
)

email_logs = Table(
    "email_logs", metadata,
    Column("id", Integer, primary_key=True),
    Column("report_id", Integer, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False),
    Column("direction", String(10), nullable=False),
    Column("from_email", String(255), nullable=True),
    Column("to_email", String(255), nullable=True),
    Column("subject", Text, nullable=True),
    Column("body", Text, nullable=True),
    Column("sent_at", DateTime(timezone=True), nullable=True),
    Index("idx_email_logs_report_id", "report_id"),
)
