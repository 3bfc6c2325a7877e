# seed.py
from app import create_app
from models import db, Classroom, Profile, Progress

SUBJECTS = ("maths", "reading", "science")

SAMPLE_SCORES = {
    "Year 4 Oak": [70, 85, 90, 64, 78, 88],
    "Year 5 Ash": [55, 92, 81, 73, 69, 95],
    "Year 6 Elm": [100, 84, 77, 91, 60, 88],
}


def seed(app=None):
    app = app or create_app()
    with app.app_context():
        db.drop_all()
        db.create_all()

        head = Profile(full_name="Head Teacher", role="head_teacher")
        db.session.add(head)

        classrooms = []
        for name in SAMPLE_SCORES:
            classrooms.append(Classroom(name=name))
        db.session.add_all(classrooms)
        db.session.flush()  # so classrooms[i].id exists

        record_count = 0
        for klass in classrooms:
            db.session.add(Profile(full_name=f"{klass.name} Teacher", role="teacher", classroom_id=klass.id))
            scores = SAMPLE_SCORES[klass.name]
            # two students per classroom, each with one score per subject
            for i in range(2):
                student = Profile(full_name=f"{klass.name} Pupil {i + 1}", role="student", classroom_id=klass.id)
                db.session.add(student)
                db.session.flush()
                for j, subject in enumerate(SUBJECTS):
                    db.session.add(Progress(
                        student_id=student.id,
                        classroom_id=klass.id,
                        subject=subject,
                        score=float(scores[i * len(SUBJECTS) + j]),
                    ))
                    record_count += 1

        db.session.commit()

        print(f"Seeded: {len(classrooms)} classrooms, 1 head teacher, {len(classrooms)} teachers, "
              f"{len(classrooms) * 2} students, {record_count} progress records.")
        return record_count


if __name__ == "__main__":
    seed()
