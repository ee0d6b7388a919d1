import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "scripts"))

from create_admin import main  # noqa: E402

from reporthub.models.models import Admin  # noqa: E402


def test_create_admin_script(db, capsys):
    assert main(["--name", "Ops", "--email", "Ops@Example.com", "--password", "pw123456"]) == 0
    assert db.query(Admin).filter(Admin.email == "ops@example.com").count() == 1
    assert "Created admin ops@example.com" in capsys.readouterr().out


def test_create_admin_script_rejects_duplicates(db, seed):
    seed.admin(email="taken@example.com")
    assert main(["--name", "Ops", "--email", "taken@example.com", "--password", "pw123456"]) == 1


def test_create_admin_script_short_password(db):
    assert main(["--name", "Ops", "--email", "ops@example.com", "--password", "123"]) == 2
