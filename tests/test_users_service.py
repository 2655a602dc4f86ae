"""Tests for userhub.services.users and userhub.services.auth against an in-memory SQLite store."""

import unittest
from unittest.mock import MagicMock, patch

from pydantic import SecretStr
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from userhub.core.ability import RuleSet, build_rule_set
from userhub.core.config import Settings
from userhub.core.security import decode_access_token, verify_password
from userhub.models import Base, User, UserRole
from userhub.services import auth as auth_service
from userhub.services import users as user_store

TEST_SETTINGS = Settings(DATABASE_URL="sqlite://", JWT_SECRET=SecretStr("test-secret"), BCRYPT_ROUNDS=4)


def _memory_session() -> Session:
    """Fresh in-memory database with the users table created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)()


def _create(db: Session, name: str, role: UserRole, password: str = "123456") -> User:
    return user_store.create(
        db,
        {"name": name, "email": f"{name.lower()}@test.com", "password": password, "role": role},
        TEST_SETTINGS,
    )


class UserStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _memory_session()

    def tearDown(self) -> None:
        self.db.close()


class TestCreate(UserStoreTestCase):
    def test_creates_with_hashed_password(self) -> None:
        user = _create(self.db, "Alice", UserRole.USER, password="plain-pass")
        self.assertIsNotNone(user.id)
        self.assertEqual(user.role, "user")
        self.assertNotEqual(user.password_hash, "plain-pass")
        self.assertTrue(verify_password("plain-pass", user.password_hash))
        self.assertIsNotNone(user.created_at)
        self.assertIsNotNone(user.updated_at)

    def test_role_defaults_to_user(self) -> None:
        user = user_store.create(
            self.db,
            {"name": "Bob", "email": "bob@test.com", "password": "123456"},
            TEST_SETTINGS,
        )
        self.assertEqual(user.role, "user")

    def test_missing_password_rejected(self) -> None:
        for password in (None, ""):
            with self.assertRaises(user_store.PasswordRequiredError):
                user_store.create(
                    self.db,
                    {"name": "Carol", "email": "carol@test.com", "password": password},
                    TEST_SETTINGS,
                )
        self.assertEqual(user_store.count(self.db), 0)

    def test_duplicate_email_rejected_without_write(self) -> None:
        _create(self.db, "Dave", UserRole.USER)
        with self.assertRaises(user_store.DuplicateEmailError) as ctx:
            _create(self.db, "Dave", UserRole.ADMIN)
        self.assertEqual(str(ctx.exception), "Email already in use")
        self.assertEqual(user_store.count(self.db), 1)

    def test_duplicate_check_does_not_touch_session(self) -> None:
        session = MagicMock()
        session.query.return_value.filter.return_value.first.return_value = User(id=1, email="x@test.com")
        with self.assertRaises(user_store.DuplicateEmailError):
            user_store.create(session, {"name": "X", "email": "x@test.com", "password": "123456"}, TEST_SETTINGS)
        session.add.assert_not_called()
        session.commit.assert_not_called()

    def test_unique_index_is_authoritative(self) -> None:
        _create(self.db, "Erin", UserRole.USER)
        # Simulate a concurrent create that slipped past the existence check.
        with patch("userhub.services.users.find_by_email", return_value=None):
            with self.assertRaises(user_store.DuplicateEmailError):
                _create(self.db, "Erin", UserRole.USER)
        self.assertEqual(user_store.count(self.db), 1)


class TestFindAll(UserStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = _create(self.db, "Admin", UserRole.ADMIN)
        self.manager = _create(self.db, "Manager", UserRole.MANAGER)
        self.user = _create(self.db, "User", UserRole.USER)
        self.other = _create(self.db, "Other", UserRole.USER)

    def test_admin_sees_everyone(self) -> None:
        users = user_store.find_all(self.db, build_rule_set(self.admin))
        self.assertEqual([u.id for u in users], [self.admin.id, self.manager.id, self.user.id, self.other.id])

    def test_manager_sees_only_user_role(self) -> None:
        users = user_store.find_all(self.db, build_rule_set(self.manager))
        self.assertEqual({u.role for u in users}, {"user"})
        self.assertEqual([u.id for u in users], [self.user.id, self.other.id])

    def test_user_sees_only_self(self) -> None:
        users = user_store.find_all(self.db, build_rule_set(self.user))
        self.assertEqual(len(users), 1)
        self.assertEqual(users[0].email, "user@test.com")

    def test_empty_rule_set_sees_nothing(self) -> None:
        self.assertEqual(user_store.find_all(self.db, RuleSet([])), [])


class TestFindUpdateRemove(UserStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = _create(self.db, "Frank", UserRole.USER)

    def test_find_one_and_by_email(self) -> None:
        self.assertEqual(user_store.find_one(self.db, self.user.id).email, "frank@test.com")
        self.assertEqual(user_store.find_by_email(self.db, "frank@test.com").id, self.user.id)
        self.assertIsNone(user_store.find_by_email(self.db, "nobody@test.com"))

    def test_find_one_missing(self) -> None:
        with self.assertRaises(user_store.UserNotFoundError):
            user_store.find_one(self.db, 999)

    def test_update_merges_fields(self) -> None:
        updated = user_store.update(self.db, self.user.id, {"name": "Franklin"}, TEST_SETTINGS)
        self.assertEqual(updated.name, "Franklin")
        self.assertEqual(updated.email, "frank@test.com")

    def test_update_rehashes_password(self) -> None:
        old_hash = self.user.password_hash
        updated = user_store.update(self.db, self.user.id, {"password": "new-pass"}, TEST_SETTINGS)
        self.assertNotEqual(updated.password_hash, old_hash)
        self.assertTrue(verify_password("new-pass", updated.password_hash))

    def test_update_email_collision(self) -> None:
        _create(self.db, "Grace", UserRole.USER)
        with self.assertRaises(user_store.DuplicateEmailError):
            user_store.update(self.db, self.user.id, {"email": "grace@test.com"}, TEST_SETTINGS)

    def test_update_missing(self) -> None:
        with self.assertRaises(user_store.UserNotFoundError):
            user_store.update(self.db, 999, {"name": "Nobody"}, TEST_SETTINGS)

    def test_remove(self) -> None:
        user_id = self.user.id
        user_store.remove(self.db, user_id)
        self.assertEqual(user_store.count(self.db), 0)
        with self.assertRaises(user_store.UserNotFoundError):
            user_store.remove(self.db, user_id)


class TestAuthService(UserStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = _create(self.db, "Heidi", UserRole.MANAGER, password="correct-pass")

    def test_authenticate_success(self) -> None:
        self.assertEqual(auth_service.authenticate(self.db, "heidi@test.com", "correct-pass").id, self.user.id)

    def test_authenticate_wrong_password(self) -> None:
        with self.assertRaises(auth_service.InvalidCredentialsError):
            auth_service.authenticate(self.db, "heidi@test.com", "wrong-pass")

    def test_authenticate_unknown_email(self) -> None:
        with self.assertRaises(auth_service.InvalidCredentialsError):
            auth_service.authenticate(self.db, "nobody@test.com", "correct-pass")

    def test_issue_login(self) -> None:
        response = auth_service.issue_login(self.user, TEST_SETTINGS)
        self.assertEqual(response.user.email, "heidi@test.com")
        self.assertEqual(response.user.role, UserRole.MANAGER)
        self.assertNotIn("password_hash", response.model_dump()["user"])
        payload = decode_access_token(response.access_token, TEST_SETTINGS)
        self.assertEqual(payload["sub"], str(self.user.id))
        self.assertEqual(payload["role"], "manager")


if __name__ == "__main__":
    unittest.main()
