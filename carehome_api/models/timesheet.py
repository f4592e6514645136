from datetime import datetime

from carehome_api.extensions import db

# Timesheet.status
DRAFT = "DRAFT"
SUBMITTED = "SUBMITTED"
RETURNED = "RETURNED"
FORWARDED = "FORWARDED"

EDITABLE_STATUSES = (DRAFT, RETURNED)
SUBMITTED_STATUSES = (SUBMITTED, FORWARDED)

# TimesheetEntry.source
SOURCE_ROTA = "ROTA"
SOURCE_MANUAL = "MANUAL"

# TimesheetSiteReview.status
REVIEW_PENDING = "PENDING"
REVIEW_APPROVED = "APPROVED"
REVIEW_RETURNED = "RETURNED"


class Timesheet(db.Model):
    __tablename__ = "timesheets"

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    worker_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    month_date = db.Column(db.Date, nullable=False)  # first of month
    status = db.Column(db.String(20), nullable=False, default=DRAFT)
    submitted_at = db.Column(db.DateTime)
    forwarded_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("site_id", "worker_id", "month_date", name="uq_timesheet_site_worker_month"),
        db.Index("ix_timesheets_worker_month", "worker_id", "month_date"),
    )

    site = db.relationship("Site")
    worker = db.relationship("User")
    entries = db.relationship(
        "TimesheetEntry",
        backref="timesheet",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TimesheetEntry.day_of_month",
    )
    reviews = db.relationship(
        "TimesheetSiteReview",
        backref="timesheet",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Timesheet id={self.id} site={self.site_id} worker={self.worker_id} {self.month_date} {self.status}>"


class TimesheetEntry(db.Model):
    __tablename__ = "timesheet_entries"

    id = db.Column(db.Integer, primary_key=True)
    timesheet_id = db.Column(db.Integer, db.ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    day_of_month = db.Column(db.Integer, nullable=False)
    shift_type_id = db.Column(db.Integer, db.ForeignKey("shift_types.id", ondelete="SET NULL"), nullable=True)
    hours = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    notes = db.Column(db.Text)
    source = db.Column(db.String(10), nullable=False, default=SOURCE_MANUAL)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("timesheet_id", "day_of_month", name="uq_timesheet_entry_day"),
        db.CheckConstraint("hours >= 0", name="ck_timesheet_entry_hours_nonneg"),
    )

    shift_type = db.relationship("ShiftType")


class TimesheetSiteReview(db.Model):
    """Supervisor decision for one site's portion of a timesheet."""
    __tablename__ = "timesheet_site_reviews"

    id = db.Column(db.Integer, primary_key=True)
    timesheet_id = db.Column(db.Integer, db.ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=REVIEW_PENDING)
    acted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    acted_at = db.Column(db.DateTime)
    comment = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("timesheet_id", "site_id", name="uq_timesheet_site_review"),
    )


class TimesheetAction(db.Model):
    """Audit trail row; survives deletion of the timesheet it describes."""
    __tablename__ = "timesheet_actions"

    id = db.Column(db.Integer, primary_key=True)
    timesheet_id = db.Column(db.Integer, db.ForeignKey("timesheets.id", ondelete="SET NULL"), nullable=True, index=True)
    site_id = db.Column(db.Integer, nullable=True)
    worker_id = db.Column(db.Integer, nullable=True)
    month_date = db.Column(db.Date, nullable=True)
    action = db.Column(db.String(20), nullable=False)  # created|autofilled|submitted|returned|site_approved|forwarded|deleted
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    comment = db.Column(db.Text)
    detail = db.Column(db.JSON)
    acted_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
