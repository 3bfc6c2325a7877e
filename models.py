# models.py
import uuid
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ROLES = ("student", "teacher", "head_teacher")


def new_id():
    return str(uuid.uuid4())


# ----- Core domain -----

class Classroom(db.Model):
    __tablename__ = "classrooms"
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(80), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    members = db.relationship("Profile", backref="classroom")
    progress = db.relationship("Progress", backref="classroom", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Classroom {self.name}>"


class Profile(db.Model):
    __tablename__ = "profiles"
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    full_name = db.Column(db.String(120), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="student")  # student | teacher | head_teacher
    classroom_id = db.Column(db.String(36), db.ForeignKey("classrooms.id"), nullable=True)

    progress = db.relationship("Progress", backref="student", cascade="all, delete-orphan")

    __table_args__ = (
        db.CheckConstraint(
            "role IN ({})".format(", ".join(f"'{r}'" for r in ROLES)), name="ck_profile_role"
        ),
    )


# ----- Progress (read by the aggregation job) -----

class Progress(db.Model):
    __tablename__ = "progress"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True)
    classroom_id = db.Column(db.String(36), db.ForeignKey("classrooms.id"), nullable=False, index=True)
    subject = db.Column(db.String(40), nullable=False, default="maths")
    score = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Range is enforced here, upstream of the aggregation job.
    __table_args__ = (
        db.CheckConstraint("score >= 0 AND score <= 100", name="ck_progress_score_range"),
    )
