import pytest

from incentive_backend.core import users
from incentive_backend.core.errors import AuthenticationError, Conflict, ValidationError


def test_failed_update_keeps_the_user_unchanged(repo, owner_id, other_id):
    with pytest.raises(Conflict):
        users.update_user(repo, owner_id, {"name": "Hacked", "email": "bob@example.com"})
    alice = users.get_user(repo, owner_id)
    assert alice.name == "Alice"
    assert alice.email == "alice@example.com"


def test_bad_role_rolls_back_earlier_changes(repo, owner_id):
    with pytest.raises(ValidationError):
        users.update_user(repo, owner_id, {"name": "Renamed", "role": "ROOT"})
    alice = users.get_user(repo, owner_id)
    assert alice.name == "Alice"
    assert alice.role == "USER"


def test_email_is_normalized_on_update(repo, owner_id):
    updated = users.update_user(repo, owner_id, {"email": "  Alice.New@Example.com "})
    assert updated.email == "alice.new@example.com"
    assert users.authenticate_user(repo, "ALICE.NEW@example.com", "alicepassword123").id == owner_id


# ------- CONFIGURED ADMIN --------
def test_ensure_admin_seeds_a_hashed_admin_once(repo):
    admin = users.ensure_admin(repo, "Admin@Example.com", "s3cret-admin")
    assert admin.role == "ADMIN"
    assert admin.email == "admin@example.com"
    assert admin.hashed_password != "s3cret-admin"
    assert admin.hashed_password.startswith("$pbkdf2-sha256$")
    assert users.authenticate_user(repo, "admin@example.com", "s3cret-admin").id == admin.id

    again = users.ensure_admin(repo, "admin@example.com", "another-password")
    assert again.id == admin.id
    assert [u.id for u in repo.list_users()] == [admin.id]
    # the second call does not reset the password
    with pytest.raises(AuthenticationError):
        users.authenticate_user(repo, "admin@example.com", "another-password")
