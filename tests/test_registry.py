"""Tests for member enrolment and lookup."""
import json

import pytest

from conftest import FailingStore, one_hot
from veriattend.attendance.errors import DuplicateIdentity, InvalidMemberData
from veriattend.attendance.models import MemberRole
from veriattend.attendance.registry import MemberRegistry
from veriattend.attendance.storage import (
    DEFAULT_ADMIN_ID, MEMBERS_KEY, AttendanceRepository, MemoryStore
)


def test_cold_start_seeds_default_admin(registry):
    assert len(registry) == 1
    admin = registry.members[0]
    assert admin.id == DEFAULT_ADMIN_ID
    assert admin.role == MemberRole.ADMIN
    assert registry.authenticate("admin", "password", "admin") is admin


def test_duplicate_matric_number_rejected_and_registry_unchanged(registry):
    registry.add_member({"name": "Ada Obi", "role": "student", "matric_number": "CSC/001"})
    size = len(registry)

    with pytest.raises(DuplicateIdentity):
        registry.add_member({"name": "Someone Else", "role": "staff", "matric_number": "CSC/001"})

    assert len(registry) == size


def test_admin_names_unique_case_insensitively(registry):
    with pytest.raises(DuplicateIdentity):
        registry.add_member({"name": "ADMIN", "role": "admin", "password": "x"})


def test_admin_needs_no_matric_and_never_keeps_a_descriptor(registry):
    admin = registry.add_member({"name": "Registrar", "role": "admin", "password": "secret",
                                 "face_descriptor": one_hot(3)})
    assert admin.matric_number is None
    assert admin.face_descriptor is None
    assert admin not in registry.biometric_members()


@pytest.mark.parametrize("data", [
    {"name": "", "role": "student", "matric_number": "CSC/010"},
    {"name": "No Matric", "role": "student"},
    {"name": "Bad Role", "role": "visitor", "matric_number": "CSC/011"},
    {"name": "Short Descriptor", "role": "student", "matric_number": "CSC/012",
     "face_descriptor": [0.1, 0.2]},
])
def test_invalid_member_data(registry, data):
    with pytest.raises(InvalidMemberData):
        registry.add_member(data)


def test_add_member_assigns_unique_ids_and_bumps_version(registry, clock):
    version = registry.version
    a = registry.add_member({"name": "A", "role": "student", "matric_number": "M1"})
    b = registry.add_member({"name": "B", "role": "student", "matric_number": "M2"})

    assert a.id != b.id
    assert registry.version == version + 2
    assert a.created_at == clock.now


def test_members_persist_and_reload(store, registry):
    member = registry.add_member({"name": "Ada Obi", "role": "student", "matric_number": "CSC/001",
                                  "face_descriptor": one_hot(0), "password": "pw"})

    reloaded = MemberRegistry(AttendanceRepository(store))
    restored = reloaded.find_by_id(member.id)
    assert restored is not None
    assert restored.matric_number == "CSC/001"
    assert restored.face_descriptor == one_hot(0)
    assert reloaded.authenticate("CSC/001", "pw", "student") is restored

    stored = json.loads(store.get(MEMBERS_KEY))
    assert all("password" not in item for item in stored)



def test_plaintext_passwords_from_older_stores_are_hashed():
    stored = [{"id": "admin-1", "name": "Admin", "memberType": "admin", "password": "password"},
              {"id": "m1", "name": "Ada Obi", "memberType": "student", "matricNumber": "CSC/001",
               "password": "pw"}]
    registry = MemberRegistry(AttendanceRepository(MemoryStore({MEMBERS_KEY: json.dumps(stored)})))

    assert registry.authenticate("admin", "password", "admin").id == "admin-1"
    assert registry.authenticate("CSC/001", "pw", "student").id == "m1"
    assert registry.authenticate("CSC/001", "nope", "student") is None
    assert registry.find_by_id("m1").password_hash != "pw"

def test_malformed_members_fall_back_to_seed():
    store = MemoryStore({MEMBERS_KEY: "{not json"})
    registry = MemberRegistry(AttendanceRepository(store))
    assert [m.id for m in registry.members] == [DEFAULT_ADMIN_ID]


def test_write_failure_keeps_member_in_memory():
    registry = MemberRegistry(AttendanceRepository(FailingStore()))
    member = registry.add_member({"name": "Ada Obi", "role": "student", "matric_number": "CSC/001"})
    assert registry.find_by_id(member.id) is member


def test_credentials_lookup(registry, students):
    assert registry.find_by_credentials("CSC/001", "student") is students.ada
    assert registry.find_by_credentials("CSC/001", "staff") is None
    assert registry.find_by_credentials("STF/001", "staff") is students.cal
    assert registry.find_by_credentials("CSC/001", "nonsense") is None
    assert registry.authenticate("CSC/001", "wrong", "student") is None


def test_biometric_members_only_include_descriptors(registry, students):
    assert registry.biometric_members() == [students.ada, students.ben]
    assert len(registry.non_admin_members()) == 3
