from __future__ import annotations

from typing import Iterator

import pytest

from app import create_app
from config import TestConfig
from models import db, Classroom, Profile, Progress
from tests.mocks.mongo import FakeCollection, FakeMongoServer, FakeUpdateOne


@pytest.fixture()
def mongo_server(monkeypatch) -> FakeMongoServer:
    monkeypatch.setattr("averages_store.UpdateOne", FakeUpdateOne)
    return FakeMongoServer()


@pytest.fixture()
def app(mongo_server: FakeMongoServer) -> Iterator:
    app = create_app(TestConfig)
    app.config["AVERAGES_CLIENT_FACTORY"] = mongo_server.client_factory
    with app.app_context():
        db.create_all()
        try:
            yield app
        finally:
            db.session.remove()
            db.drop_all()


@pytest.fixture()
def averages(mongo_server: FakeMongoServer) -> FakeCollection:
    return mongo_server.collection(TestConfig.MONGO_DB_NAME)


@pytest.fixture()
def add_scores(app):
    """Insert progress rows: ``add_scores({"A": [80, 90], "B": [100]})``."""

    def _add(scores_by_classroom):
        for classroom_id, scores in scores_by_classroom.items():
            if db.session.get(Classroom, classroom_id) is None:
                db.session.add(Classroom(id=classroom_id, name=f"Class {classroom_id}"))
            student = Profile(full_name=f"Pupil in {classroom_id}", role="student", classroom_id=classroom_id)
            db.session.add(student)
            db.session.flush()
            for score in scores:
                db.session.add(Progress(student_id=student.id, classroom_id=classroom_id, score=score))
        db.session.commit()

    return _add
