"""Shared fixtures: an in-memory gradebook source."""

from datetime import datetime

import pytest

from starfish_export import (
    Assignment,
    Gradebook,
    GradebookSource,
    GradeDefinition,
    Site,
    Term,
    User,
)


RUN_STARTED = datetime(2024, 10, 15, 2, 0, 0)


class FakeSource(GradebookSource):
    """GradebookSource backed by plain dicts; `failing_sites` raise on gradebook lookup."""

    def __init__(self):
        self.current_terms = []
        self.sites = {}           # term eid -> [Site]
        self.users = {}           # site id -> [User] or None
        self.gradebooks = {}      # site id -> Gradebook
        self.assignments = {}     # gradebook uid -> [Assignment]
        self.grades = {}          # (uid, assignment id, user id) -> GradeDefinition
        self.course_grades = {}   # uid -> {eid: grade}
        self.sections = {}        # section id -> set(eid)
        self.failing_sites = set()
        self.failing_users = set()

    def get_current_terms(self):
        return [Term(eid=t) for t in self.current_terms]

    def get_sites(self, term_eid):
        return list(self.sites.get(term_eid, []))

    def is_user_site(self, site_id):
        return site_id.startswith("~")

    def is_special_site(self, site_id):
        return site_id.startswith("!")

    def get_section_members(self, section_id):
        return set(self.sections[section_id])

    def get_users_allowed(self, site_id, permission):
        if site_id in self.failing_users:
            raise RuntimeError("directory unavailable")
        return self.users.get(site_id)

    def get_gradebook(self, site_id):
        if site_id in self.failing_sites:
            raise RuntimeError(f"gradebook lookup failed for {site_id}")
        return self.gradebooks.get(site_id)

    def get_assignments(self, gradebook_uid):
        return list(self.assignments.get(gradebook_uid, []))

    def get_grade_definition(self, gradebook_uid, assignment_id, user_id):
        return self.grades.get((gradebook_uid, assignment_id, user_id))

    def get_course_grades(self, gradebook_uid):
        return dict(self.course_grades.get(gradebook_uid, {}))

    # helpers for building scenarios

    def add_site(self, term_eid, site_id, users, provider_group_id=None):
        self.sites.setdefault(term_eid, []).append(
            Site(id=site_id, title=f"{site_id} title", provider_group_id=provider_group_id)
        )
        self.users[site_id] = [User(id=f"id-{eid}", eid=eid) for eid in users]
        self.gradebooks[site_id] = Gradebook(uid=f"gb-{site_id}", site_id=site_id)
        self.assignments[f"gb-{site_id}"] = []
        self.course_grades[f"gb-{site_id}"] = {}

    def add_assignment(self, site_id, assignment_id, name=None, **kwargs):
        kwargs.setdefault("points", 100)
        kwargs.setdefault("counted", True)
        self.assignments[f"gb-{site_id}"].append(
            Assignment(id=assignment_id, name=name or f"Assignment {assignment_id}", **kwargs)
        )

    def grade(self, site_id, assignment_id, eid, grade, recorded):
        self.grades[(f"gb-{site_id}", assignment_id, f"id-{eid}")] = GradeDefinition(
            student_uid=f"id-{eid}", grade=grade, date_recorded=recorded
        )


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def scenario_source(source):
    """Term 2024FA, one site, one assignment, one graded student."""
    source.add_site("2024FA", "SITE1", ["u1"])
    source.add_assignment("SITE1", "A1", name="Essay 1", points=100, counted=True)
    source.grade("SITE1", "A1", "u1", "95", datetime(2024, 10, 1, 10, 0, 0))
    source.course_grades["gb-SITE1"] = {"u1": "91.2"}
    return source
