# trainhub/models/tables.py
"""
Relational schema of the remote store.

Timestamps are Text in the fixed-width UTC format produced by the
schemas, so ORDER BY on the raw column is chronological.
"""

from sqlalchemy import JSON, Column, ForeignKey, Integer, Text, UniqueConstraint, text
from sqlalchemy.orm import declarative_base

Base = declarative_base()
metadata = Base.metadata


class Sessions(Base):
    __tablename__ = 'sessions'

    id = Column(Text, primary_key=True)
    trainer_id = Column(Text, nullable=False, index=True)
    trainer_name = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    scheduled_at = Column(Text, nullable=False)
    duration = Column(Integer, nullable=False)
    meeting_link = Column(Text, nullable=False)
    student_ids = Column(JSON, nullable=False, default=list)
    requested_ids = Column(JSON, nullable=False, default=list)
    status = Column(Text, nullable=False, server_default=text("'scheduled'"))
    min_students = Column(Integer, nullable=False, server_default=text('1'))
    max_students = Column(Integer)
    created_at = Column(Text, nullable=False)


class Bookings(Base):
    __tablename__ = 'bookings'

    id = Column(Text, primary_key=True)
    trainer_id = Column(Text, nullable=False, index=True)
    student_id = Column(Text, index=True)
    student_name = Column(Text, nullable=False)
    student_email = Column(Text, nullable=False, index=True)
    message = Column(Text)
    payment_status = Column(Text, nullable=False, server_default=text("'pending'"))
    session_id = Column(ForeignKey('sessions.id'), index=True)
    checkout_session_id = Column(Text, index=True)
    created_at = Column(Text, nullable=False)


class SessionEnrollments(Base):
    __tablename__ = 'session_enrollments'
    __table_args__ = (
        UniqueConstraint('session_id', 'booking_id'),
    )

    id = Column(Text, primary_key=True)
    session_id = Column(ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False, index=True)
    booking_id = Column(ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Text, index=True)
    joined_at = Column(Text)
    created_at = Column(Text, nullable=False)
