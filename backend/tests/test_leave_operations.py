from __future__ import annotations

import pytest

from dashboard.errors import RecordNotFound
from dashboard.leave_operations import (
    delete_team_invitation,
    leave_participation,
    leave_team,
    update_member_status,
)
from dashboard.telemetry import capture_events


def _two_team_contact(store) -> None:
    store.add("Contacts", "c1", {"Email": "ada@example.edu", "Members": ["m1", "m2"]})
    store.add("Members", "m1", {"Contact": ["c1"], "Team": ["T1"], "Status": "Active"})
    store.add("Members", "m2", {"Contact": ["c1"], "Team": ["T2"], "Status": "Active"})


@pytest.mark.asyncio
async def test_leave_team_only_touches_requested_team(store, tables) -> None:
    _two_team_contact(store)

    with capture_events() as events:
        result = await leave_team(store, tables, "c1", "T1")

    assert result.success
    assert result.updated_records == 1
    assert store.fields("Members", "m1")["Status"] == "Inactive"
    assert store.fields("Members", "m2")["Status"] == "Active"
    assert [event.name for event in events] == ["team_left"]
    assert events[0].payload["strategy"] == "links"


@pytest.mark.asyncio
async def test_leave_unknown_team_deactivates_every_membership(store, tables) -> None:
    _two_team_contact(store)

    result = await leave_team(store, tables, "c1", "unknown")

    assert result.updated_records == 2
    assert {store.fields("Members", member)["Status"] for member in ("m1", "m2")} == {"Inactive"}


@pytest.mark.asyncio
async def test_leave_unknown_team_skips_invited_and_inactive_members(store, tables) -> None:
    store.add("Contacts", "c1", {"Email": "ada@example.edu", "Members": ["m1", "m2", "m3"]})
    store.add("Members", "m1", {"Contact": ["c1"], "Team": ["T1"], "Status": "Active"})
    store.add("Members", "m2", {"Contact": ["c1"], "Team": ["T2"], "Status": "Invited"})
    store.add("Members", "m3", {"Contact": ["c1"], "Team": ["T3"], "Status": "Inactive"})

    result = await leave_team(store, tables, "c1", "unknown")

    assert result.updated_records == 1
    assert [step.record_id for step in result.steps] == ["m1"]
    assert store.fields("Members", "m1")["Status"] == "Inactive"
    assert store.fields("Members", "m2")["Status"] == "Invited"


@pytest.mark.asyncio
async def test_leaving_a_team_already_left_changes_nothing(store, tables) -> None:
    store.add("Contacts", "c1", {"Email": "ada@example.edu", "Members": ["m1"]})
    store.add("Members", "m1", {"Contact": ["c1"], "Team": ["T1"], "Status": "Inactive"})

    with capture_events() as events:
        result = await leave_team(store, tables, "c1", "T1")

    assert result.success
    assert result.updated_records == 0
    assert result.steps == []
    assert result.message == "No team member records were found to update"
    assert events[0].payload["strategy"] == "query"
    assert store.calls_for("update") == []


@pytest.mark.asyncio
async def test_leave_team_falls_back_to_member_query(store, tables) -> None:
    store.add("Contacts", "c1", {"Email": "ada@example.edu"})
    store.add("Members", "m1", {"Contact": ["c1"], "Team": ["T1"], "Status": "Active"})
    store.add("Members", "m2", {"Contact": ["c1"], "Team": ["T1"], "Status": "Inactive"})
    store.add("Members", "m3", {"Contact": ["c2"], "Team": ["T1"], "Status": "Active"})

    result = await leave_team(store, tables, "c1", "T1")

    assert result.success
    assert result.updated_records == 1
    assert store.fields("Members", "m1")["Status"] == "Inactive"
    assert store.fields("Members", "m3")["Status"] == "Active"


@pytest.mark.asyncio
async def test_leave_team_survives_profile_read_failure(store, tables) -> None:
    _two_team_contact(store)
    store.fail("find", "Contacts", "c1")

    result = await leave_team(store, tables, "c1", "T2")

    assert result.success
    assert result.updated_records == 1
    assert store.fields("Members", "m2")["Status"] == "Inactive"


@pytest.mark.asyncio
async def test_leave_team_skips_members_that_cannot_be_read(store, tables) -> None:
    _two_team_contact(store)
    store.fail("find", "Members", "m2")

    result = await leave_team(store, tables, "c1", "T1")

    assert result.updated_records == 1
    assert store.fields("Members", "m1")["Status"] == "Inactive"


@pytest.mark.asyncio
async def test_leave_team_with_nothing_to_do_still_succeeds(store, tables) -> None:
    store.add("Contacts", "c1", {"Email": "ada@example.edu"})

    result = await leave_team(store, tables, "c1", "T1")

    assert result.success
    assert result.updated_records == 0
    assert result.message == "No team member records were found to update"


@pytest.mark.asyncio
async def test_leave_team_reports_query_failure(store, tables) -> None:
    store.add("Contacts", "c1", {"Email": "ada@example.edu"})
    store.fail("query", "Members")

    result = await leave_team(store, tables, "c1", "T1")

    assert not result.success
    assert result.error_kind == "StoreFault"


@pytest.mark.asyncio
async def test_leave_team_requires_identifiers(store, tables) -> None:
    result = await leave_team(store, tables, "", "T1")

    assert not result.success
    assert result.error_kind == "MissingInput"
    assert store.calls == []


@pytest.mark.asyncio
async def test_failed_step_does_not_stop_the_saga(store, tables) -> None:
    store.add("Contacts", "c1", {"Members": ["m1", "m2", "m3"]})
    for member_id in ("m1", "m2", "m3"):
        store.add("Members", member_id, {"Contact": ["c1"], "Team": ["T1"], "Status": "Active"})
    store.fail("update", "Members", "m2")

    result = await leave_team(store, tables, "c1", "unknown")

    assert result.success
    assert result.updated_records == 2
    assert result.attempted == 3
    assert result.partial_failure
    assert [step.ok for step in result.steps] == [True, False, True]
    assert store.fields("Members", "m3")["Status"] == "Inactive"


@pytest.mark.asyncio
async def test_leave_participation_by_cohort_only(store, tables) -> None:
    store.add("Participation", "p1", {"Contacts": ["c1"], "Cohorts": ["C1"], "Status": "Active", "Capacity": "Participant"})
    store.add("Participation", "p2", {"Contacts": ["c1"], "Cohorts": ["C2"], "Status": "Active", "Capacity": "Participant"})
    store.add("Participation", "p3", {"Contacts": ["c2"], "Cohorts": ["C1"], "Status": "Active", "Capacity": "Participant"})

    result = await leave_participation(store, tables, "c1", cohort_id="C1")

    assert result.updated_records == 1
    assert store.fields("Participation", "p1")["Status"] == "Inactive"
    assert store.fields("Participation", "p2")["Status"] == "Active"
    assert store.fields("Participation", "p3")["Status"] == "Active"


@pytest.mark.asyncio
async def test_leave_participation_skips_non_participants_and_inactive(store, tables) -> None:
    store.add("Participation", "p1", {"Contacts": ["c1"], "Cohorts": ["C1"], "Capacity": "Mentor"})
    store.add("Participation", "p2", {"Contacts": ["c1"], "Cohorts": ["C1"], "Status": "Inactive", "Capacity": "Participant"})
    store.add("Participation", "p3", {"Contacts": ["c1"], "Cohorts": ["C1"], "Capacity": "Participant"})

    result = await leave_participation(store, tables, "c1", cohort_id="C1")

    assert result.updated_records == 1
    assert store.fields("Participation", "p3")["Status"] == "Inactive"
    assert "Status" not in store.fields("Participation", "p1")


@pytest.mark.asyncio
async def test_leave_participation_by_initiative(store, tables) -> None:
    store.add("Cohorts", "C1", {"Initiative": ["I1"]})
    store.add("Cohorts", "C2", {"Initiative": ["I2"]})
    store.add("Participation", "p1", {"Contacts": ["c1"], "Cohorts": ["C1"], "Capacity": "Participant"})
    store.add("Participation", "p2", {"Contacts": ["c1"], "Cohorts": ["C2"], "Capacity": "Participant"})
    store.add(
        "Participation",
        "p3",
        {"Contacts": ["c1"], "Cohorts": ["C9"], "Initiative": ["I1"], "Capacity": "Participant"},
    )

    result = await leave_participation(store, tables, "c1", initiative_id="I1")

    assert result.updated_records == 2
    assert store.fields("Participation", "p1")["Status"] == "Inactive"
    assert store.fields("Participation", "p3")["Status"] == "Inactive"
    assert "Status" not in store.fields("Participation", "p2")
    # p3 carries its own initiative lookup, so cohort C9 is never fetched.
    assert ("find", "Cohorts", "C9") not in store.calls


@pytest.mark.asyncio
async def test_leave_participation_skips_records_with_unreadable_cohort(store, tables) -> None:
    store.add("Cohorts", "C2", {"Initiative": ["I1"]})
    store.add("Participation", "p1", {"Contacts": ["c1"], "Cohorts": ["C1"], "Capacity": "Participant"})
    store.add("Participation", "p2", {"Contacts": ["c1"], "Cohorts": ["C2"], "Capacity": "Participant"})
    store.fail("find", "Cohorts", "C1")

    result = await leave_participation(store, tables, "c1", initiative_id="I1")

    assert result.success
    assert result.updated_records == 1
    assert store.fields("Participation", "p2")["Status"] == "Inactive"


@pytest.mark.asyncio
async def test_leave_participation_direct_path(store, tables) -> None:
    store.add("Participation", "p1", {"Contacts": ["c1"], "Cohorts": ["C1"], "Capacity": "Participant"})

    with capture_events() as events:
        result = await leave_participation(store, tables, "c1", participation_id="p1")

    assert result.success
    assert result.updated_records == 1
    assert events[0].name == "participation_left"
    assert events[0].payload["participation_id"] == "p1"


@pytest.mark.asyncio
async def test_leave_participation_direct_path_rejects_other_contacts(store, tables) -> None:
    store.add("Participation", "p1", {"Contacts": ["c2"], "Capacity": "Participant"})

    result = await leave_participation(store, tables, "c1", participation_id="p1")

    assert not result.success
    assert result.error_kind == "NotAuthorized"
    assert store.calls_for("update") == []


@pytest.mark.asyncio
async def test_leave_participation_direct_path_missing_record(store, tables) -> None:
    result = await leave_participation(store, tables, "c1", participation_id="p404")

    assert result.error_kind == "RecordNotFound"


@pytest.mark.asyncio
async def test_leave_participation_requires_an_identifier(store, tables) -> None:
    result = await leave_participation(store, tables, "c1")

    assert result.error_kind == "MissingInput"
    assert store.calls == []


@pytest.mark.asyncio
async def test_delete_team_invitation_removes_member_and_invites(store, tables) -> None:
    store.add("Members", "m1", {"Contact": ["c2"], "Team": ["T1"], "Status": "Invited"})
    store.add("Invites", "inv1", {"Member": ["m1"], "Token": "abc"})
    store.add("Invites", "inv2", {"Member": ["m7"], "Token": "def"})

    with capture_events() as events:
        result = await delete_team_invitation(store, tables, "m1", "T1")

    assert result.success
    assert result.updated_records == 1
    assert not store.has("Members", "m1")
    assert not store.has("Invites", "inv1")
    assert store.has("Invites", "inv2")
    assert events[0].payload["invites_deleted"] == 1


@pytest.mark.asyncio
async def test_delete_team_invitation_tolerates_invite_cleanup_failure(store, tables) -> None:
    store.add("Members", "m1", {"Team": ["T1"], "Status": "Invited"})
    store.add("Invites", "inv1", {"Member": ["m1"]})
    store.fail("destroy", "Invites", "inv1")

    result = await delete_team_invitation(store, tables, "m1", "T1")

    assert result.success
    assert not result.partial_failure
    assert not store.has("Members", "m1")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("fields", "kind"),
    [
        ({"Team": ["T2"], "Status": "Invited"}, "NotAuthorized"),
        ({"Team": ["T1"], "Status": "Active"}, "NotAuthorized"),
    ],
)
async def test_delete_team_invitation_validates_member(store, tables, fields, kind) -> None:
    store.add("Members", "m1", fields)

    result = await delete_team_invitation(store, tables, "m1", "T1")

    assert result.error_kind == kind
    assert store.has("Members", "m1")


@pytest.mark.asyncio
async def test_delete_team_invitation_missing_member(store, tables) -> None:
    result = await delete_team_invitation(store, tables, "m404", "T1")

    assert result.error_kind == RecordNotFound.kind


@pytest.mark.asyncio
async def test_delete_team_invitation_reports_member_delete_failure(store, tables) -> None:
    store.add("Members", "m1", {"Team": ["T1"], "Status": "Invited"})
    store.fail("destroy", "Members", "m1")

    result = await delete_team_invitation(store, tables, "m1", "T1")

    assert not result.success
    assert result.error_kind == "StoreFault"
    assert store.calls_for("query", "Invites") == []


@pytest.mark.asyncio
async def test_update_member_status(store, tables) -> None:
    store.add("Members", "m1", {"Team": ["T1"], "Status": "Active"})

    result = await update_member_status(store, tables, "m1", "T1")
    rejected = await update_member_status(store, tables, "m1", "T2")

    assert result.success and result.updated_records == 1
    assert store.fields("Members", "m1")["Status"] == "Inactive"
    assert rejected.error_kind == "NotAuthorized"
