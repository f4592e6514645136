from datetime import datetime

from carehome_api.extensions import db


class ShiftType(db.Model):
    __tablename__ = "shift_types"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    code = db.Column(db.String(20), nullable=False)
    label = db.Column(db.String(100), nullable=False)
    default_hours = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    kind = db.Column(db.String(20), nullable=True)  # SLEEP|ANNUAL_LEAVE|SICKNESS|WAKING_NIGHT|OTHER_LEAVE, NULL = worked
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_shift_type_company_code"),
    )


class Rota(db.Model):
    """Published schedule for one site and month. Only LIVE rotas are authoritative."""
    __tablename__ = "rotas"

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    month_date = db.Column(db.Date, nullable=False)  # first of month
    status = db.Column(db.String(20), nullable=False, default="DRAFT")  # DRAFT | LIVE
    published_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("site_id", "month_date", name="uq_rota_site_month"),
    )

    entries = db.relationship("RotaEntry", backref="rota", cascade="all, delete-orphan", lazy="dynamic")


class RotaEntry(db.Model):
    __tablename__ = "rota_entries"

    id = db.Column(db.Integer, primary_key=True)
    rota_id = db.Column(db.Integer, db.ForeignKey("rotas.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_month = db.Column(db.Integer, nullable=False)
    shift_type_id = db.Column(db.Integer, db.ForeignKey("shift_types.id", ondelete="SET NULL"), nullable=True)
    hours = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint("rota_id", "user_id", "day_of_month", name="uq_rota_entry_user_day"),
    )
