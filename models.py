#=================================================================
# models.py (mappings of the hosted PBE Journey schema)
#=================================================================
# The schema itself is owned by the hosted database project; these
# classes only map the columns this service reads and writes.
import uuid
from sqlalchemy import (
    Column, String, Integer, ForeignKey, Text, CheckConstraint,
    Boolean, BigInteger, Date, DateTime, Numeric, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from base import Base  # from base.py


# ================================================================
# 0. USER PROFILES (one row per auth user)
# ================================================================
class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True)  # = auth.users.id
    name = Column(String, nullable=True)
    nickname = Column(String, nullable=True)
    email = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")  # 'admin' = super admin
    team_id = Column(UUID(as_uuid=True), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
    team_role = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ================================================================
# 1. TEAMS
# ================================================================
class Team(Base):
    __tablename__ = "teams"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # auth.users lives in the hosted auth schema; no FK mapped here
    owner_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    plan = Column(String, nullable=False, default="free")
    member_count = Column(Integer, default=1)
    max_members = Column(Integer, default=5)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")


# ================================================================
# 2. TEAM MEMBERS
# ================================================================
class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    team_id = Column(UUID(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, nullable=False, default="member")
    status = Column(String, nullable=False, default="active")
    invited_by = Column(UUID(as_uuid=True), nullable=True)
    # denormalised from auth.users for display
    email = Column(String, nullable=True)
    full_name = Column(String, nullable=True)

    joined_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "team_id"),
        CheckConstraint("role IN ('owner','admin','member')", name="role"),
        CheckConstraint("status IN ('active','pending','suspended')", name="status"),
    )

    team = relationship("Team", back_populates="members")


# ================================================================
# 3. TEAM INVITATIONS
# ================================================================
class TeamInvitation(Base):
    __tablename__ = "team_invitations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    team_id = Column(UUID(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False, default="member")
    invited_by = Column(UUID(as_uuid=True), nullable=False)
    token = Column(String, unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    status = Column(String, nullable=False, default="pending", index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('pending','accepted','declined','expired')", name="status"),
    )


# ================================================================
# 4. QUESTIONS
# ================================================================
class Question(Base):
    __tablename__ = "questions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    book_of_bible = Column(String, nullable=False)
    chapter = Column(Integer, nullable=False)
    verse = Column(Integer, nullable=True)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    points = Column(Integer, nullable=False, default=10)
    time_to_answer = Column(Integer, nullable=False, default=30)
    tier = Column(String, nullable=False, default="free")
    created_by = Column(UUID(as_uuid=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("tier IN ('free','pro','enterprise')", name="tier"),
    )

    def to_dict(self) -> dict:
        """Snapshot stored inside quiz_sessions.questions."""
        return {
            "id": str(self.id),
            "book_of_bible": self.book_of_bible,
            "chapter": self.chapter,
            "verse": self.verse,
            "question": self.question,
            "answer": self.answer,
            "points": self.points,
            "time_to_answer": self.time_to_answer,
            "tier": self.tier,
        }


# ================================================================
# 5. STUDY ASSIGNMENTS
# ================================================================
class StudyAssignment(Base):
    __tablename__ = "study_assignments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    team_id = Column(UUID(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    study_items = Column(JSONB, nullable=False, default=list)
    description = Column(Text, nullable=True)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ================================================================
# 6. QUIZ SESSIONS
# ================================================================
class QuizSession(Base):
    __tablename__ = "quiz_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    team_id = Column(UUID(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=True)
    assignment_id = Column(UUID(as_uuid=True), ForeignKey("study_assignments.id", ondelete="CASCADE"), nullable=True)

    questions = Column(JSONB, nullable=False, default=list)
    current_question_index = Column(Integer, nullable=False, default=0)
    results = Column(JSONB, nullable=False, default=list)
    status = Column(String, nullable=False, default="active")

    # runner state
    show_answer = Column(Boolean, nullable=False, default=False)
    time_left = Column(Integer, nullable=False, default=30)
    timer_active = Column(Boolean, nullable=False, default=False)
    timer_started = Column(Boolean, nullable=False, default=False)
    has_time_expired = Column(Boolean, nullable=False, default=False)

    total_points = Column(Integer, nullable=False, default=0)
    max_points = Column(Integer, nullable=False, default=0)
    bonus_xp = Column(Integer, nullable=False, default=0)
    estimated_minutes = Column(Integer, nullable=False, default=0)
    total_actual_time_spent_seconds = Column(Integer, nullable=False, default=0)
    approval_status = Column(String, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('quick-start','custom','study-assignment')", name="type"),
        CheckConstraint("status IN ('active','completed','paused')", name="status"),
    )


# ================================================================
# 7. QUIZ QUESTION LOGS
# ================================================================
class QuizQuestionLog(Base):
    __tablename__ = "quiz_question_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quiz_session_id = Column(UUID(as_uuid=True), ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    question_id = Column(UUID(as_uuid=True), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    points_earned = Column(Integer, nullable=False)
    total_points_possible = Column(Integer, nullable=False)
    time_spent = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    answered_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ================================================================
# 8. GAMIFICATION
# ================================================================
class UserStats(Base):
    __tablename__ = "user_stats"

    user_id = Column(UUID(as_uuid=True), primary_key=True)
    total_xp = Column(BigInteger, nullable=False, default=0)
    current_level = Column(Integer, nullable=False, default=1)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_quiz_date = Column(Date, nullable=True)


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    criteria_type = Column(String, nullable=False)
    criteria_value = Column(Integer, nullable=False)
    badge_icon_url = Column(String, nullable=True)


class UserAchievement(Base):
    __tablename__ = "user_achievements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    achievement_id = Column(UUID(as_uuid=True), ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)
    unlocked_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("user_id", "achievement_id"),)


# ================================================================
# 9. PLANS & SUBSCRIPTIONS
# ================================================================
class Plan(Base):
    __tablename__ = "plans"

    id = Column(String, primary_key=True)  # free / pro / enterprise
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)


class PlanPrice(Base):
    __tablename__ = "plan_prices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(String, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    currency = Column(String, nullable=False)
    interval = Column(String, nullable=False)
    amount = Column(Numeric, nullable=False)
    stripe_price_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("plan_id", "currency", "interval"),
        CheckConstraint("currency IN ('USD','GBP','AUD','CAD')", name="currency"),
        CheckConstraint("interval IN ('monthly','yearly')", name="interval"),
    )


class Subscription(Base):
    """Main per-user plan row that feature gating reads."""
    __tablename__ = "subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), unique=True, nullable=False)
    plan = Column(String, nullable=False, default="free")
    status = Column(String, nullable=False, default="active")
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class StripeCustomer(Base):
    __tablename__ = "stripe_customers"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    user_id = Column(UUID(as_uuid=True), unique=True, nullable=False)
    customer_id = Column(String, unique=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class StripeSubscription(Base):
    """Raw mirror of the customer's Stripe subscription."""
    __tablename__ = "stripe_subscriptions"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    customer_id = Column(String, unique=True, nullable=False)
    subscription_id = Column(String, nullable=True)
    price_id = Column(String, nullable=True)
    current_period_start = Column(BigInteger, nullable=True)
    current_period_end = Column(BigInteger, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False)
    payment_method_brand = Column(String, nullable=True)
    payment_method_last4 = Column(String, nullable=True)
    status = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class StripeOrder(Base):
    __tablename__ = "stripe_orders"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    checkout_session_id = Column(String, nullable=False)
    payment_intent_id = Column(String, nullable=False)
    customer_id = Column(String, nullable=False)
    amount_subtotal = Column(BigInteger, nullable=False)
    amount_total = Column(BigInteger, nullable=False)
    currency = Column(String, nullable=False)
    payment_status = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)


# ================================================================
# 10. RATE LIMITS
# ================================================================
class RateLimit(Base):
    __tablename__ = "rate_limits"

    key = Column(String, primary_key=True)
    requests = Column(JSONB, nullable=False, default=list)  # epoch ms
    reset_time = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
