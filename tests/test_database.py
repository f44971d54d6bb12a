import sqlite3

import pytest

from multicalc.database import (
    BadNameError,
    BadPasswordError,
    Database,
    User,
    check_password,
)
from multicalc.expression import Expression, Status


def _strong() -> str:
    return "password" + str(123)


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


def _user(name: str) -> User:
    password = _strong()
    return User(name=name, password=password)


def test_check_password_rules():
    assert check_password(_strong()) is True
    assert check_password("password") is False
    assert check_password(str(12345678)) is False
    assert check_password("pass" + str(1)) is False


def test_insert_user_sets_id(db):
    user = _user("alice")
    new_id = db.insert_user(user)
    assert user.id == new_id
    loaded = db.select_user_by_name("alice")
    assert loaded.id == new_id
    assert loaded.name == "alice"
    assert loaded.password == _strong()


def test_insert_user_ids_increase(db):
    first = db.insert_user(_user("alice"))
    second = db.insert_user(_user("carol"))
    assert second > first


def test_insert_user_weak_password(db):
    password = "password"
    with pytest.raises(BadPasswordError):
        db.insert_user(User(name="alice", password=password))
    assert db.select_users() == []


def test_insert_user_short_name(db):
    with pytest.raises(BadNameError):
        db.insert_user(_user("bob"))


def test_insert_user_duplicate_name(db):
    db.insert_user(_user("alice"))
    with pytest.raises(sqlite3.IntegrityError):
        db.insert_user(_user("alice"))


def test_select_users(db):
    db.insert_user(_user("alice"))
    db.insert_user(_user("carol"))
    assert sorted(user.name for user in db.select_users()) == ["alice", "carol"]


def test_select_missing_user(db):
    with pytest.raises(LookupError):
        db.select_user_by_name("nobody")


def test_update_user_both_fields(db):
    user_id = db.insert_user(_user("alice"))
    password = "password" + str(456)
    db.update_user(User(name="alicia", password=password), user_id)
    loaded = db.select_user_by_name("alicia")
    assert loaded.id == user_id
    assert loaded.password == password


def test_update_user_name_only(db):
    user_id = db.insert_user(_user("alice"))
    password = ""
    db.update_user(User(name="alicia", password=password), user_id)
    loaded = db.select_user_by_name("alicia")
    assert loaded.password == _strong()


def test_update_user_name_with_weak_password_still_renames(db):
    user_id = db.insert_user(_user("alice"))
    password = "password"
    with pytest.raises(BadPasswordError):
        db.update_user(User(name="alicia", password=password), user_id)
    assert db.select_user_by_name("alicia").password == _strong()


def test_update_user_password_only(db):
    user_id = db.insert_user(_user("alice"))
    password = "password" + str(456)
    db.update_user(User(name="", password=password), user_id)
    assert db.select_user_by_name("alice").password == password


def test_update_user_password_with_short_name(db):
    user_id = db.insert_user(_user("alice"))
    password = "password" + str(456)
    with pytest.raises(BadNameError):
        db.update_user(User(name="al", password=password), user_id)
    assert db.select_user_by_name("alice").password == password


def test_update_user_nothing_valid(db):
    user_id = db.insert_user(_user("alice"))
    password = ""
    with pytest.raises(BadNameError):
        db.update_user(User(name="", password=password), user_id)


def test_delete_user(db):
    user_id = db.insert_user(_user("alice"))
    db.delete_user(user_id)
    with pytest.raises(LookupError):
        db.select_user_by_name("alice")


def test_expression_round_trip(db):
    expression = Expression(exp="1+2", status=Status.TODO, user_id=7)
    new_id = db.insert_expression(expression)
    assert expression.id == str(new_id)
    loaded = db.select_expression_by_id(new_id)
    assert loaded.id == expression.id
    assert loaded.exp == "1+2"
    assert loaded.status is Status.TODO
    assert loaded.user_id == 7
    assert loaded.result == 0.0


def test_update_expression(db):
    expression = Expression(exp="5/2", user_id=1)
    new_id = db.insert_expression(expression)
    expression.status = Status.COMPLETED
    expression.result = 2.5
    db.update_expression(expression)
    loaded = db.select_expression_by_id(new_id)
    assert loaded.status is Status.COMPLETED
    assert loaded.result == 2.5


def test_select_expressions_and_delete(db):
    ids = [db.insert_expression(Expression(exp=text, user_id=1)) for text in ("1+2", "3*4")]
    assert [e.exp for e in db.select_expressions()] == ["1+2", "3*4"]
    db.delete_expression(ids[0])
    remaining = db.select_expressions()
    assert [e.id for e in remaining] == [str(ids[1])]
    with pytest.raises(LookupError):
        db.select_expression_by_id(ids[0])


def test_data_persists_in_file(tmp_path):
    path = tmp_path / "calc.db"
    with Database(path) as first:
        first.insert_user(_user("alice"))
        new_id = first.insert_expression(Expression(exp="1+2", user_id=3))
    with Database(path) as second:
        assert second.select_user_by_name("alice").name == "alice"
        assert second.select_expression_by_id(new_id).user_id == 3