"""
SQLAlchemy ORM models for season registration and fee tracking.
"""

import enum
import uuid
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    Date,
    DateTime,
    Numeric,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from leaguereg.database.db import Base

# Money columns: two decimal places, returned as Decimal
MONEY = Numeric(10, 2, asdecimal=True)

# Column.info tags read by the form field registry (services/field_mapper.py)
IDENTITY = {"identity": True, "form_writable": False}
AUDIT = {"audit": True, "form_writable": False}
FINANCIAL = {"financial": True, "form_writable": False}
SYSTEM = {"form_writable": False}


class RegistrationMode(str, enum.Enum):
    """Whether a player may hold registrations on more than one team in a job."""

    PP = "PP"  # single team per job
    CAC = "CAC"  # multiple teams per job


class RegistrationRole(str, enum.Enum):
    """Role a registration was created for."""

    PLAYER = "Player"
    STAFF = "Staff"


def new_registration_id() -> str:
    return str(uuid.uuid4())


class Job(Base):
    """One season/event instance that players register for."""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    job_path = Column(String(100), nullable=True, unique=True)  # URL slug (e.g., "summer-league-2026")
    core_regform_player = Column(String, nullable=True)  # Mode token, e.g. "CAC09|..." or "PP10|..."
    json_options = Column(Text, nullable=True)  # Free-form JSON job options
    player_profile_metadata_json = Column(Text, nullable=True)  # Dynamic player form schema
    add_processing_fees = Column(Boolean, default=True, nullable=False)
    processing_fee_percent = Column(MONEY, nullable=True)  # Overrides the global CC percent
    offer_player_insurance = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    leagues = relationship("League", back_populates="job")
    teams = relationship("Team", back_populates="job")
    discount_codes = relationship("DiscountCode", back_populates="job")


class League(Base):
    """League within a job; top of the fee fallback chain."""

    __tablename__ = "leagues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False)
    name = Column(String, nullable=False)
    player_fee_override = Column(MONEY, nullable=True)

    # Relationships
    job = relationship("Job", back_populates="leagues")
    agegroups = relationship("AgeGroup", back_populates="league")

    __table_args__ = (Index("idx_leagues_job_id", "job_id"),)


class AgeGroup(Base):
    """Fee/eligibility tier that teams belong to."""

    __tablename__ = "agegroups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=True)
    name = Column(String, nullable=False)
    team_fee = Column(MONEY, nullable=True)
    roster_fee = Column(MONEY, nullable=True)
    player_fee_override = Column(MONEY, nullable=True)

    # Relationships
    league = relationship("League", back_populates="agegroups")
    teams = relationship("Team", back_populates="agegroup")


class Team(Base):
    """Roster container within a job."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False)
    agegroup_id = Column(Integer, ForeignKey("agegroups.id"), nullable=True)
    name = Column(String, nullable=False)
    fee_base = Column(MONEY, nullable=True)
    per_registrant_fee = Column(MONEY, nullable=True)
    per_registrant_deposit = Column(MONEY, nullable=True)
    max_count = Column(Integer, default=0, nullable=False)  # 0 = unlimited
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    job = relationship("Job", back_populates="teams")
    agegroup = relationship("AgeGroup", back_populates="teams")

    __table_args__ = (
        Index("idx_teams_job_id", "job_id"),
        CheckConstraint("max_count >= 0", name="ck_teams_max_count_non_negative"),
    )


class Registration(Base):
    """One player's enrollment record for a job, carrying all financial state."""

    __tablename__ = "registrations"

    # Identity
    registration_id = Column(String(36), primary_key=True, default=new_registration_id, info=IDENTITY)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, info=IDENTITY)
    family_user_id = Column(String, nullable=False, info=IDENTITY)
    player_user_id = Column(String, nullable=True, info=IDENTITY)
    role = Column(String, default=RegistrationRole.PLAYER.value, nullable=False, info=SYSTEM)

    # Assignment
    assigned_team_id = Column(Integer, ForeignKey("teams.id"), nullable=True, info=IDENTITY)
    assignment = Column(String, nullable=True, info=SYSTEM)  # Display label, e.g. "Player: U12 Blue"
    active = Column(Boolean, default=False, nullable=False, info=SYSTEM)

    # Audit
    registration_ts = Column(DateTime(timezone=True), server_default=func.now(), info=AUDIT)
    modified = Column(DateTime(timezone=True), server_default=func.now(), info=AUDIT)
    modified_by = Column(String, nullable=True, info=AUDIT)
    version = Column(Integer, nullable=False, info=AUDIT)

    # Money (I1: fee_total = max(0, base + processing - discount - donation))
    fee_base = Column(MONEY, default=0, nullable=False, info=FINANCIAL)
    fee_processing = Column(MONEY, default=0, nullable=False, info=FINANCIAL)
    fee_discount = Column(MONEY, default=0, nullable=False, info=FINANCIAL)
    fee_donation = Column(MONEY, default=0, nullable=False, info=FINANCIAL)
    fee_late_fee = Column(MONEY, default=0, nullable=False, info=FINANCIAL)
    fee_total = Column(MONEY, default=0, nullable=False, info=FINANCIAL)
    paid_total = Column(MONEY, default=0, nullable=False, info=FINANCIAL)
    owed_total = Column(MONEY, default=0, nullable=False, info=FINANCIAL)
    discount_code_id = Column(Integer, ForeignKey("discount_codes.id"), nullable=True, info=FINANCIAL)

    # Player profile (writable from the registration form)
    jersey_size = Column(String, nullable=True)
    shorts_size = Column(String, nullable=True)
    t_shirt = Column(String, nullable=True)
    position = Column(String, nullable=True)
    uniform_no = Column(String, nullable=True)
    grad_year = Column(String, nullable=True)
    school_name = Column(String, nullable=True)
    school_grade = Column(String, nullable=True)
    club_name = Column(String, nullable=True)
    height_inches = Column(String, nullable=True)
    weight_lbs = Column(String, nullable=True)
    skill_level = Column(String, nullable=True)
    sport_years_exp = Column(Integer, nullable=True)
    sport_assn_id = Column(String, nullable=True)  # Governing-body membership number
    sport_assn_id_exp_date = Column(Date, nullable=True)
    medical_note = Column(Text, nullable=True)
    b_med_alert = Column(Boolean, default=False, nullable=False)
    b_waiver_signed = Column(Boolean, default=False, nullable=False)
    special_requests = Column(Text, nullable=True)
    health_insurer = Column(String, nullable=True)
    insured_name = Column(String, nullable=True)
    fastest_shot = Column(Float, nullable=True)
    cert_date = Column(DateTime(timezone=True), nullable=True)

    # Set by back-office flows only
    b_uploaded_med_form = Column(Boolean, default=False, nullable=False)
    b_uploaded_insurance_card = Column(Boolean, default=False, nullable=False)
    regsaver_policy_id = Column(String, nullable=True)

    # Relationships
    team = relationship("Team", foreign_keys=[assigned_team_id])
    discount_code = relationship("DiscountCode", foreign_keys=[discount_code_id])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_registrations_job_family", "job_id", "family_user_id"),
        Index("idx_registrations_job_team_active", "job_id", "assigned_team_id", "active"),
        Index("idx_registrations_player", "player_user_id"),
    )


class DiscountCode(Base):
    """Job-scoped, time-windowed discount code (fixed amount or percent of base)."""

    __tablename__ = "discount_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False)
    code_name = Column(String(50), nullable=False)
    as_percent = Column(Boolean, default=False, nullable=False)
    code_amount = Column(MONEY, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    code_start_date = Column(DateTime(timezone=True), nullable=False)
    code_end_date = Column(DateTime(timezone=True), nullable=False)
    modified = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    modified_by = Column(String, nullable=True)

    # Relationships
    job = relationship("Job", back_populates="discount_codes")

    __table_args__ = (
        UniqueConstraint("job_id", "code_name", name="uq_discount_codes_job_code"),
        CheckConstraint("code_amount >= 0", name="ck_discount_codes_amount_non_negative"),
    )


class Setting(Base):
    """Application configuration."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
