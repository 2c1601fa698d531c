# app/models.py
# Table definitions used to create / verify the schema. Queries go through
# sqlalchemy.text() in the service modules; ids are UUID strings and
# timestamps are ISO-8601 UTC strings written by the app.
from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    Boolean,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from .db import Base

ID = String(36)
TS = String(40)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(ID, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(120), nullable=False, default="")
    phone = Column(String(32), nullable=True)
    role = Column(String(16), nullable=False, default="dancer")  # instructor | dancer | guardian | studio | admin
    avatar_url = Column(Text, nullable=True)
    date_of_birth = Column(String(10), nullable=True)
    guardian_id = Column(ID, ForeignKey("profiles.id"), nullable=True)
    consent_given = Column(Boolean, default=False, nullable=False)
    bio = Column(Text, nullable=True)
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class Studio(Base):
    __tablename__ = "studios"

    id = Column(ID, primary_key=True)
    owner_id = Column(ID, ForeignKey("profiles.id"), nullable=True)  # studio-role profile managing it
    name = Column(String(160), nullable=False)
    address = Column(String(255), nullable=True)
    city = Column(String(80), nullable=True)
    state = Column(String(40), nullable=True)
    zip_code = Column(String(16), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class Student(Base):
    __tablename__ = "students"

    id = Column(ID, primary_key=True)
    profile_id = Column(ID, ForeignKey("profiles.id"), nullable=True, index=True)
    guardian_id = Column(ID, ForeignKey("profiles.id"), nullable=True)
    instructor_id = Column(ID, ForeignKey("profiles.id"), nullable=True, index=True)
    full_name = Column(String(120), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    age_group = Column(String(32), nullable=True)
    skill_level = Column(String(32), nullable=True)
    goals = Column(Text, nullable=True)
    medical_notes = Column(Text, nullable=True)  # sensitive; instructors only
    emergency_contact_name = Column(String(120), nullable=True)
    emergency_contact_phone = Column(String(32), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class DanceClass(Base):
    __tablename__ = "classes"

    id = Column(ID, primary_key=True)
    instructor_id = Column(ID, ForeignKey("profiles.id"), nullable=False, index=True)
    studio_id = Column(ID, ForeignKey("studios.id"), nullable=True, index=True)
    class_type = Column(String(24), nullable=False, default="group")  # group | private | workshop | master_class
    title = Column(String(160), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    start_time = Column(TS, nullable=False, index=True)
    end_time = Column(TS, nullable=False)
    max_capacity = Column(Integer, nullable=True)
    is_public = Column(Boolean, default=False, nullable=False)

    pricing_model = Column(String(16), nullable=False, default="per_person")
    base_cost = Column(Numeric(10, 2), nullable=True)              # per_class / tiered
    cost_per_person = Column(Numeric(10, 2), nullable=True)        # per_person
    cost_per_hour = Column(Numeric(10, 2), nullable=True)          # per_hour
    tiered_base_students = Column(Integer, nullable=True)          # tiered
    tiered_additional_cost = Column(Numeric(10, 2), nullable=True) # tiered

    is_cancelled = Column(Boolean, default=False, nullable=False)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(ID, primary_key=True)
    student_id = Column(ID, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(ID, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    enrolled_at = Column(TS, nullable=False)
    attendance_status = Column(String(16), nullable=True)  # present | absent | late | excused
    notes = Column(Text, nullable=True)
    __table_args__ = (UniqueConstraint("student_id", "class_id", name="uq_enrollment_once"),)


class Note(Base):
    __tablename__ = "notes"

    id = Column(ID, primary_key=True)
    author_id = Column(ID, ForeignKey("profiles.id"), nullable=False, index=True)
    student_id = Column(ID, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(ID, ForeignKey("classes.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(200), nullable=True)
    content = Column(Text, nullable=False)
    tags = Column(Text, nullable=True)  # JSON list
    visibility = Column(String(24), nullable=False, default="private")
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(ID, primary_key=True)
    student_id = Column(ID, ForeignKey("students.id"), nullable=True, index=True)  # null for studio invoices
    class_id = Column(ID, ForeignKey("classes.id", ondelete="SET NULL"), nullable=True, index=True)
    studio_id = Column(ID, ForeignKey("studios.id"), nullable=True, index=True)
    requested_by = Column(ID, ForeignKey("profiles.id"), nullable=True, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(16), nullable=False, default="other")
    payment_status = Column(String(16), nullable=False, default="pending")
    stripe_payment_id = Column(String(255), nullable=True)
    transaction_date = Column(TS, nullable=False)
    confirmed_by_instructor_at = Column(TS, nullable=True)
    confirmed_by_studio_at = Column(TS, nullable=True)
    notes = Column(Text, nullable=True)
    receipt_url = Column(Text, nullable=True)
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class LessonPack(Base):
    __tablename__ = "lesson_packs"

    id = Column(ID, primary_key=True)
    name = Column(String(120), nullable=False)
    lesson_count = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TS, nullable=False)


class LessonPackPurchase(Base):
    __tablename__ = "lesson_pack_purchases"

    id = Column(ID, primary_key=True)
    student_id = Column(ID, ForeignKey("students.id"), nullable=False, index=True)
    lesson_pack_id = Column(ID, ForeignKey("lesson_packs.id"), nullable=False)
    instructor_id = Column(ID, ForeignKey("profiles.id"), nullable=True)
    remaining_lessons = Column(Integer, nullable=False)
    stripe_checkout_session_id = Column(String(255), nullable=True, unique=True)
    purchased_at = Column(TS, nullable=False)
    __table_args__ = (CheckConstraint("remaining_lessons >= 0", name="ck_remaining_non_negative"),)


class LessonPackUsage(Base):
    __tablename__ = "lesson_pack_usage"

    id = Column(ID, primary_key=True)
    lesson_pack_purchase_id = Column(ID, ForeignKey("lesson_pack_purchases.id"), nullable=False, index=True)
    private_lesson_request_id = Column(ID, ForeignKey("private_lesson_requests.id"), nullable=True)
    lessons_used = Column(Integer, nullable=False, default=1)
    used_at = Column(TS, nullable=False)


class PrivateLessonRequest(Base):
    __tablename__ = "private_lesson_requests"

    id = Column(ID, primary_key=True)
    student_id = Column(ID, ForeignKey("students.id"), nullable=False, index=True)
    instructor_id = Column(ID, ForeignKey("profiles.id"), nullable=True)
    requested_focus = Column(Text, nullable=True)
    preferred_dates = Column(Text, nullable=True)  # JSON list
    additional_notes = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="pending")
    instructor_response = Column(Text, nullable=True)
    scheduled_class_id = Column(ID, ForeignKey("classes.id"), nullable=True)
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class WaiverTemplate(Base):
    __tablename__ = "waiver_templates"

    id = Column(ID, primary_key=True)
    created_by_id = Column(ID, ForeignKey("profiles.id"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=False)
    waiver_type = Column(String(32), nullable=False, default="general")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class Waiver(Base):
    __tablename__ = "waivers"

    id = Column(ID, primary_key=True)
    template_id = Column(ID, ForeignKey("waiver_templates.id"), nullable=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=False)
    waiver_type = Column(String(32), nullable=False, default="general")
    issued_by_id = Column(ID, ForeignKey("profiles.id"), nullable=False, index=True)
    issued_by_role = Column(String(16), nullable=False)
    recipient_id = Column(ID, ForeignKey("profiles.id"), nullable=True, index=True)
    student_id = Column(ID, ForeignKey("students.id"), nullable=True)
    recipient_type = Column(String(16), nullable=False)  # dancer | guardian | studio
    class_id = Column(ID, ForeignKey("classes.id"), nullable=True)
    private_lesson_id = Column(ID, ForeignKey("private_lesson_requests.id"), nullable=True)
    status = Column(String(16), nullable=False, default="pending")  # pending | signed | expired
    expires_at = Column(TS, nullable=True)
    signed_at = Column(TS, nullable=True)
    signed_by_id = Column(ID, ForeignKey("profiles.id"), nullable=True)
    signature_image_url = Column(Text, nullable=True)
    created_at = Column(TS, nullable=False)
    updated_at = Column(TS, nullable=False)


class WaiverSignature(Base):
    __tablename__ = "waiver_signatures"

    id = Column(ID, primary_key=True)
    waiver_id = Column(ID, ForeignKey("waivers.id", ondelete="CASCADE"), nullable=False, index=True)
    signed_by_id = Column(ID, ForeignKey("profiles.id"), nullable=False)
    signer_name = Column(String(120), nullable=False)
    signer_email = Column(String(255), nullable=False)
    signature_image_url = Column(Text, nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    signed_at = Column(TS, nullable=False)


class StudioInquiry(Base):
    __tablename__ = "studio_inquiries"

    id = Column(ID, primary_key=True)
    studio_id = Column(ID, ForeignKey("studios.id"), nullable=True, index=True)
    studio_name = Column(String(160), nullable=False)
    contact_name = Column(String(120), nullable=False)
    contact_email = Column(String(255), nullable=False)
    contact_phone = Column(String(32), nullable=True)
    message = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="new")
    is_responded = Column(Boolean, default=False, nullable=False)
    responded_at = Column(TS, nullable=True)
    response_notes = Column(Text, nullable=True)
    contact_method = Column(String(16), nullable=True)
    gmail_thread_id = Column(String(64), nullable=True)
    last_email_message_id = Column(String(64), nullable=True)
    email_count = Column(Integer, default=0, nullable=False)
    last_email_date = Column(TS, nullable=True)
    has_unread_reply = Column(Boolean, default=False, nullable=False)
    created_at = Column(TS, nullable=False)


class InstructorAccessRequest(Base):
    __tablename__ = "instructor_access_requests"

    id = Column(ID, primary_key=True)
    full_name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    message = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="pending")  # pending | approved | rejected
    reviewed_at = Column(TS, nullable=True)
    reviewed_by = Column(ID, ForeignKey("profiles.id"), nullable=True)
    admin_notes = Column(Text, nullable=True)
    created_at = Column(TS, nullable=False)


# Helpful indexes
Index("ix_payments_status_date", Payment.payment_status, Payment.transaction_date)
Index("ix_inquiries_status_created", StudioInquiry.status, StudioInquiry.created_at)
Index("ix_usage_used_at", LessonPackUsage.used_at)
