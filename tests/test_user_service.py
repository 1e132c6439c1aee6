"""Tests for the user record service against real and fake storage."""

from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from usermgmt.database import Database, StorageError, verify_password
from usermgmt.models import (
    ANONYMOUS,
    AuthenticatedActor,
    DeletedUser,
    Role,
    UserChanges,
    UserProfile,
    UserRecord,
    UserSummary,
    UserUpdate,
)
from usermgmt.users import (
    ForbiddenError,
    NotFoundError,
    UserRecordService,
    prepare_changes,
)

pytestmark = pytest.mark.anyio

PASSWORD = "correct-horse-battery"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class AsyncMemoryStore:
    """Coroutine-based store used to exercise the asynchronous storage path."""

    def __init__(self, records: List[UserRecord]) -> None:
        self.records: Dict[int, UserRecord] = {record.id: record for record in records}
        self.writes = 0
        self.fail_with: Optional[Exception] = None

    async def find_user(self, user_id: int) -> Optional[UserRecord]:
        if self.fail_with is not None:
            raise self.fail_with
        return self.records.get(user_id)

    async def list_users(self) -> List[UserRecord]:
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.records.values())

    async def update_user(self, user_id: int, changes: UserChanges) -> Optional[UserRecord]:
        self.writes += 1
        existing = self.records.get(user_id)
        if existing is None:
            return None
        updated = replace(existing, **changes.columns())
        self.records[user_id] = updated
        return updated

    async def delete_user(self, user_id: int) -> bool:
        self.writes += 1
        return self.records.pop(user_id, None) is not None


def _record(user_id: int, name: str, role: Role = Role.USER) -> UserRecord:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return UserRecord(
        id=user_id,
        name=name,
        email=f"{name.lower()}@example.com",
        password_hash="pbkdf2-sha256$stored",
        role=role,
        created_at=created,
        updated_at=created,
    )


@pytest.fixture
def store() -> AsyncMemoryStore:
    return AsyncMemoryStore([_record(1, "Admin", Role.ADMIN), _record(5, "Alice"), _record(7, "Carol")])


@pytest.fixture
def service(store: AsyncMemoryStore) -> UserRecordService:
    clock = FakeClock(datetime(2024, 6, 1, tzinfo=timezone.utc))
    return UserRecordService(store, clock=clock, hasher=lambda value: f"hashed:{value[::-1]}")


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "users.sqlite3")
    db.initialize()
    return db


USER_5 = AuthenticatedActor(id=5, role=Role.USER)
ADMIN_1 = AuthenticatedActor(id=1, role=Role.ADMIN)


async def test_list_users_returns_summaries_without_contact_details(service: UserRecordService) -> None:
    users = await service.list_users()

    assert [user.id for user in users] == [1, 5, 7]
    assert all(isinstance(user, UserSummary) for user in users)
    assert not hasattr(users[0], "email")
    assert not hasattr(users[0], "password_hash")


async def test_get_user_returns_profile(service: UserRecordService) -> None:
    profile = await service.get_user(5)

    assert isinstance(profile, UserProfile)
    assert profile.email == "alice@example.com"
    assert not hasattr(profile, "password_hash")


async def test_get_missing_user_raises_not_found(service: UserRecordService) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        await service.get_user(404)
    assert excinfo.value.user_id == 404


async def test_user_can_rename_themselves(service: UserRecordService, store: AsyncMemoryStore) -> None:
    before = store.records[5].updated_at

    profile = await service.update_user(USER_5, 5, UserUpdate(name="Bob"))

    assert profile.name == "Bob"
    assert store.records[5].name == "Bob"
    assert profile.updated_at > before


async def test_user_cannot_promote_themselves(service: UserRecordService, store: AsyncMemoryStore) -> None:
    with pytest.raises(ForbiddenError):
        await service.update_user(USER_5, 5, UserUpdate(role=Role.ADMIN))

    assert store.records[5].role is Role.USER
    assert store.writes == 0


async def test_admin_can_promote_another_user(service: UserRecordService, store: AsyncMemoryStore) -> None:
    profile = await service.update_user(ADMIN_1, 5, UserUpdate(role=Role.ADMIN))

    assert profile.role is Role.ADMIN
    assert store.records[5].role is Role.ADMIN


async def test_user_cannot_update_someone_else(service: UserRecordService, store: AsyncMemoryStore) -> None:
    with pytest.raises(ForbiddenError):
        await service.update_user(USER_5, 7, UserUpdate(name="Mallory"))
    assert store.records[7].name == "Carol"


async def test_anonymous_actor_cannot_update(service: UserRecordService, store: AsyncMemoryStore) -> None:
    with pytest.raises(ForbiddenError):
        await service.update_user(ANONYMOUS, 5, UserUpdate(name="Ghost"))
    assert store.writes == 0


@pytest.mark.parametrize(
    "actor",
    [ADMIN_1, USER_5, ANONYMOUS],
    ids=["admin", "user", "anonymous"],
)
async def test_update_missing_user_is_not_found_for_every_actor(
    service: UserRecordService, store: AsyncMemoryStore, actor
) -> None:
    with pytest.raises(NotFoundError):
        await service.update_user(actor, 999, UserUpdate(role=Role.ADMIN))
    assert store.writes == 0


async def test_password_is_hashed_and_never_returned(
    service: UserRecordService, store: AsyncMemoryStore
) -> None:
    plaintext = "a-brand-new-password"

    profile = await service.update_user(USER_5, 5, UserUpdate(password=plaintext))

    stored = store.records[5]
    assert stored.password_hash == f"hashed:{plaintext[::-1]}"
    assert plaintext not in stored.password_hash
    rendered = repr(profile) + str(vars(profile))
    assert plaintext not in rendered
    assert stored.password_hash not in rendered
    assert plaintext not in repr(UserUpdate(password=plaintext))


async def test_update_raises_not_found_when_row_disappears(service: UserRecordService, store: AsyncMemoryStore) -> None:
    async def vanish(user_id: int, changes: UserChanges) -> None:
        return None

    store.update_user = vanish  # type: ignore[assignment]

    with pytest.raises(NotFoundError):
        await service.update_user(USER_5, 5, UserUpdate(name="Bob"))


async def test_delete_user_is_not_idempotent(service: UserRecordService) -> None:
    result = await service.delete_user(USER_5, 5)
    assert result == DeletedUser(id=5)

    with pytest.raises(NotFoundError):
        await service.delete_user(USER_5, 5)


async def test_user_cannot_delete_someone_else(service: UserRecordService, store: AsyncMemoryStore) -> None:
    with pytest.raises(ForbiddenError):
        await service.delete_user(USER_5, 7)
    assert 7 in store.records


async def test_admin_delete_missing_user_is_not_found(service: UserRecordService) -> None:
    with pytest.raises(NotFoundError):
        await service.delete_user(ADMIN_1, 999)


async def test_storage_errors_propagate_unchanged(service: UserRecordService, store: AsyncMemoryStore) -> None:
    failure = StorageError("database is locked")
    store.fail_with = failure

    with pytest.raises(StorageError) as excinfo:
        await service.list_users()
    assert excinfo.value is failure

    with pytest.raises(StorageError):
        await service.update_user(ADMIN_1, 5, UserUpdate(name="Bob"))


async def test_prepare_changes_only_hashes_supplied_password() -> None:
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    changes = prepare_changes(UserUpdate(name="Bob"), now=now, hasher=lambda value: "unused")
    assert changes.columns() == {"updated_at": now, "name": "Bob"}

    changes = prepare_changes(UserUpdate(password="secret-value"), now=now, hasher=lambda value: "H")
    assert changes.columns() == {"updated_at": now, "password_hash": "H"}


async def test_service_updates_sqlite_database(database: Database) -> None:
    alice = database.create_user("Alice", "alice@example.com", PASSWORD)
    service = UserRecordService(database)
    actor = AuthenticatedActor(id=alice.id, role=Role.USER)

    profile = await service.update_user(actor, alice.id, UserUpdate(name="Alice B", password="fresh-password-1"))

    assert profile.name == "Alice B"
    assert profile.updated_at >= alice.updated_at
    stored = database.find_user(alice.id)
    assert stored is not None
    assert verify_password("fresh-password-1", stored.password_hash)
    assert not verify_password(PASSWORD, stored.password_hash)


async def test_service_deletes_from_sqlite_database(database: Database) -> None:
    admin = database.create_user("Root", "root@example.com", PASSWORD, role=Role.ADMIN)
    bob = database.create_user("Bob", "bob@example.com", PASSWORD)
    service = UserRecordService(database)
    actor = AuthenticatedActor(id=admin.id, role=Role.ADMIN)

    assert await service.delete_user(actor, bob.id) == DeletedUser(id=bob.id)
    assert database.find_user(bob.id) is None
    with pytest.raises(NotFoundError):
        await service.delete_user(actor, bob.id)
