"""
Student database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from schooltrack.app.db.session import Base


class Student(Base):
    """
    Student assigned to a route.

    `user_id` links the student's own login (used to mark presence at a
    stop); `parent_id` links the parent account following the student.
    """
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    user_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=True, index=True)
    parent_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)

    name = Column(String(200), nullable=False)
    student_number = Column(String(50), nullable=True)

    route_id = Column(Integer, ForeignKey('routes.id'), nullable=True, index=True)
    stop_id = Column(Integer, ForeignKey('stops.id'), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Student(id={self.id}, name='{self.name}', route_id={self.route_id})>"
