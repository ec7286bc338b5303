#!/usr/bin/env python3
"""
Starfish Gradebook Export (Sakai -> Starfish flat files)

Walks the gradebooks of every course site in the selected terms and writes two
files for the Starfish early-alert system:
  - assessments.txt: one row per gradebook item plus a calculated "Course Grade"
    item per site (or per provider section)
  - scores.txt: one row per student per graded item

Every run is a full rebuild: existing files are removed first and both outputs
are sorted so identical upstream data produces byte-identical files.

Features:
  - Terms from config (`starfish.export.term`) or the currently active terms
  - Optional provider-section scoping (`starfish.use_provider`): rows are written
    per roster section instead of per site
  - Per-site failures are logged and skipped, the rest of the run continues

Requirements:
  - Python 3.9+
  - requests, pydantic, pyyaml (pip install requests pydantic pyyaml)

Settings sources (precedence: config > ENV):
  - Config: sakai.base_url, sakai.username, sakai.password, starfish.export.term,
    starfish.export.path, starfish.use_provider, logging.level
  - ENV: SAKAI_BASE_URL, SAKAI_USERNAME, SAKAI_PASSWORD, STARFISH_EXPORT_TERM,
    STARFISH_EXPORT_PATH, STARFISH_USE_PROVIDER, STARFISH_LOG_LEVEL
"""
from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Set, Tuple

import requests
import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

JOB_NAME = "StarfishExport"
ASSESSMENT_FILE = "assessments.txt"
SCORE_FILE = "scores.txt"
VIEW_OWN_GRADES = "gradebook.viewOwnGrades"
DATE_FORMAT = "%Y-%m-%d"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Upstream reports a course grade that has not been calculated yet as "0.0"
NOT_COMPUTED_GRADE = "0.0"

# ----------------------------- Models ----------------------------- #

class Term(BaseModel):
    eid: str

class Site(BaseModel):
    id: str
    title: Optional[str] = None
    provider_group_id: Optional[str] = None

class User(BaseModel):
    id: str
    eid: str

class Gradebook(BaseModel):
    uid: str
    site_id: str

class Assignment(BaseModel):
    id: str
    name: str
    due_date: Optional[datetime] = None
    points: Optional[float] = None
    counted: bool = False
    external_app_name: Optional[str] = None

class GradeDefinition(BaseModel):
    student_uid: str
    grade: Optional[str] = None
    date_recorded: Optional[datetime] = None


@dataclass(frozen=True)
class AssessmentRecord:
    integration_id: str
    scope_id: str
    name: str
    description: str
    due_date: str
    points: str
    is_counted: int
    is_course_grade: int
    is_calculated: int

    HEADER: ClassVar[Tuple[str, ...]] = (
        "integration_id",
        "scope_id",
        "name",
        "description",
        "due_date",
        "points",
        "is_counted",
        "is_course_grade",
        "is_calculated",
    )

    def as_row(self) -> List[Any]:
        return [getattr(self, column) for column in self.HEADER]


@dataclass(frozen=True)
class ScoreRecord:
    assessment_integration_id: str
    scope_id: str
    user_integration_id: str
    grade: str
    reserved: str
    graded_timestamp: str

    HEADER: ClassVar[Tuple[str, ...]] = (
        "assessment_integration_id",
        "scope_id",
        "user_integration_id",
        "grade",
        "reserved",
        "graded_timestamp",
    )

    @property
    def sort_key(self) -> Tuple[str, str, str]:
        return (self.assessment_integration_id, self.scope_id, self.user_integration_id)

    def as_row(self) -> List[Any]:
        return [getattr(self, column) for column in self.HEADER]


class ExportError(Exception):
    """Raised when one or both output files could not be written."""

# ----------------------------- Collaborators ----------------------------- #

class GradebookSource(ABC):
    """Directory, membership and gradebook lookups the export depends on."""

    @abstractmethod
    def get_current_terms(self) -> List[Term]:
        pass

    @abstractmethod
    def get_sites(self, term_eid: str) -> List[Site]:
        """Sites whose `term_eid` property equals the given term."""

    @abstractmethod
    def is_user_site(self, site_id: str) -> bool:
        pass

    @abstractmethod
    def is_special_site(self, site_id: str) -> bool:
        pass

    def unpack_provider_id(self, packed: str) -> List[str]:
        """Split a packed provider id ("A+B+C") into section ids."""
        return [p.strip() for p in packed.split("+") if p.strip()]

    @abstractmethod
    def get_section_members(self, section_id: str) -> Set[str]:
        """User eids enrolled in a roster section."""

    @abstractmethod
    def get_users_allowed(self, site_id: str, permission: str) -> Optional[List[User]]:
        """Users holding `permission` in the site, or None if the site is unknown."""

    @abstractmethod
    def get_gradebook(self, site_id: str) -> Optional[Gradebook]:
        pass

    @abstractmethod
    def get_assignments(self, gradebook_uid: str) -> List[Assignment]:
        pass

    @abstractmethod
    def get_grade_definition(self, gradebook_uid: str, assignment_id: str, user_id: str) -> Optional[GradeDefinition]:
        pass

    @abstractmethod
    def get_course_grades(self, gradebook_uid: str) -> Dict[str, Optional[str]]:
        """Calculated course grade per student eid."""

# ----------------------------- API Client ----------------------------- #

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Sakai sends dates as epoch millis; ISO strings are accepted as well."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0)
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        d = datetime.fromisoformat(s)
    except ValueError:
        return None
    if d.tzinfo is not None:
        d = d.astimezone().replace(tzinfo=None)
    return d


def _collection(data: Any, key: str) -> List[dict]:
    if data is None:
        return []
    if isinstance(data, dict):
        return data.get(key) or []
    return data


class SakaiClient(GradebookSource):
    def __init__(self, base_url: str, timeout: int = 30):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.timeout = timeout

    def login(self, username: str, password: str) -> str:
        url = f"{self.base_url}/direct/session/new"
        resp = self.session.post(
            url,
            data={"_username": username, "_password": password},
            timeout=self.timeout,
        )
        if not resp.ok:
            raise RuntimeError(f"POST {url} failed: {resp.status_code} {resp.text}")
        session_id = resp.text.strip()
        self.session.params = {"sakai.session": session_id}
        logger.info(f"Established Sakai session for {username}")
        return session_id

    def _get(self, path: str, params: Optional[dict] = None, allow_missing: bool = False):
        url = f"{self.base_url}{path}"
        items = []
        while url:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            if resp.status_code == 404 and allow_missing:
                return None
            if not resp.ok:
                raise RuntimeError(f"GET {url} failed: {resp.status_code} {resp.text}")
            data = resp.json()
            if isinstance(data, list):
                items.extend(data)
            else:
                return data
            next_url = None
            links = requests.utils.parse_header_links(resp.headers.get("Link", ""))
            for link in links:
                if link.get("rel") == "next":
                    next_url = link.get("url")
            url = next_url
            params = None
        return items

    @staticmethod
    def _quote(value: Any) -> str:
        return requests.utils.quote(str(value), safe="")

    def get_current_terms(self) -> List[Term]:
        raw = self._get("/direct/academic_session/current.json")
        return [Term(eid=t["eid"]) for t in _collection(raw, "academic_session_collection")]

    def get_sites(self, term_eid: str) -> List[Site]:
        raw = self._get("/direct/site.json", params={"term_eid": term_eid, "_limit": 10000})
        return [
            Site(id=s["id"], title=s.get("title"), provider_group_id=s.get("providerGroupId"))
            for s in _collection(raw, "site_collection")
        ]

    def is_user_site(self, site_id: str) -> bool:
        return site_id.startswith("~")

    def is_special_site(self, site_id: str) -> bool:
        return site_id.startswith("!")

    def get_section_members(self, section_id: str) -> Set[str]:
        raw = self._get(f"/direct/membership/section/{self._quote(section_id)}.json")
        members = set()
        for m in _collection(raw, "membership_collection"):
            eid = m.get("userEid") or m.get("userId")
            if eid:
                members.add(eid)
        return members

    def get_users_allowed(self, site_id: str, permission: str) -> Optional[List[User]]:
        raw = self._get(
            f"/direct/site/{self._quote(site_id)}/usersAllowed.json",
            params={"permission": permission},
            allow_missing=True,
        )
        if raw is None:
            return None
        return [User(id=u["id"], eid=u["eid"]) for u in _collection(raw, "user_collection")]

    def get_gradebook(self, site_id: str) -> Optional[Gradebook]:
        raw = self._get(f"/direct/gradebook/site/{self._quote(site_id)}.json", allow_missing=True)
        if raw is None:
            return None
        return Gradebook(uid=raw.get("uid") or site_id, site_id=site_id)

    def get_assignments(self, gradebook_uid: str) -> List[Assignment]:
        raw = self._get(f"/direct/gradebook/{self._quote(gradebook_uid)}/assignments.json")
        result: List[Assignment] = []
        for a in _collection(raw, "assignments"):
            result.append(
                Assignment(
                    id=str(a["id"]),
                    name=a["name"],
                    due_date=parse_timestamp(a.get("dueDate")),
                    points=a.get("points"),
                    counted=bool(a.get("counted")),
                    external_app_name=a.get("externalAppName"),
                )
            )
        return result

    def get_grade_definition(self, gradebook_uid: str, assignment_id: str, user_id: str) -> Optional[GradeDefinition]:
        raw = self._get(
            f"/direct/gradebook/{self._quote(gradebook_uid)}/item/{self._quote(assignment_id)}/grade/{self._quote(user_id)}.json",
            allow_missing=True,
        )
        if not raw:
            return None
        grade = raw.get("grade")
        return GradeDefinition(
            student_uid=raw.get("studentUid") or user_id,
            grade=None if grade is None else str(grade),
            date_recorded=parse_timestamp(raw.get("dateRecorded")),
        )

    def get_course_grades(self, gradebook_uid: str) -> Dict[str, Optional[str]]:
        raw = self._get(f"/direct/gradebook/{self._quote(gradebook_uid)}/courseGrades.json")
        if isinstance(raw, list):
            return {g["userEid"]: (None if g.get("grade") is None else str(g["grade"])) for g in raw}
        return {eid: (None if g is None else str(g)) for eid, g in (raw or {}).items()}

# ----------------------------- Term & Site Selection ----------------------------- #

def resolve_terms(configured: Optional[List[str]], source: GradebookSource) -> List[str]:
    if configured:
        return list(configured)
    terms = source.get_current_terms()
    logger.debug(f"terms: {len(terms)}")
    return sorted({t.eid for t in terms})


def select_sites(source: GradebookSource, term_eid: str) -> List[Site]:
    sites: List[Site] = []
    for s in source.get_sites(term_eid):
        if source.is_user_site(s.id):
            continue
        if source.is_special_site(s.id):
            continue
        logger.debug(f"Site: {s.id}")
        sites.append(s)
    return sites


def expand_provider_sections(source: GradebookSource, site: Site) -> Dict[str, Set[str]]:
    """Map each provider section of the site to its member eids (empty if the site has none)."""
    packed = (site.provider_group_id or "").strip()
    if not packed:
        return {}
    sections: Dict[str, Set[str]] = {}
    for provider_id in source.unpack_provider_id(packed):
        members = set(source.get_section_members(provider_id))
        logger.debug(f"Section {provider_id} of site {site.id}: {len(members)} member(s)")
        sections[provider_id] = members
    return sections

# ----------------------------- Record Building ----------------------------- #

def integration_id(scope_id: str, item_id: Any) -> str:
    return f"{scope_id}-{item_id}"


def format_date(value: Optional[datetime]) -> str:
    return value.strftime(DATE_FORMAT) if value is not None else ""


def format_points(value: Optional[float]) -> str:
    return str(value) if value is not None else ""


def round_grade(grade: str) -> str:
    """Round a calculated course grade half-up to two decimals ("87.005" -> "87.01")."""
    d = Decimal(grade.strip())
    if not d.is_finite():
        raise InvalidOperation(f"Course grade is not a number: {grade!r}")
    return str(d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def course_grade_assessment(scope_id: str) -> AssessmentRecord:
    return AssessmentRecord(
        integration_id=integration_id(scope_id, "CG"),
        scope_id=scope_id,
        name="Course Grade",
        description="Calculated Course Grade",
        due_date="",
        points="100",
        is_counted=0,
        is_course_grade=1,
        is_calculated=1,
    )


def sort_assessments(records: Iterable[AssessmentRecord]) -> List[AssessmentRecord]:
    unique: Dict[str, AssessmentRecord] = {}
    for r in records:
        if r.integration_id in unique:
            logger.debug(f"Dropping duplicate assessment {r.integration_id}")
            continue
        unique[r.integration_id] = r
    return sorted(unique.values(), key=lambda r: r.integration_id)


def sort_scores(records: Iterable[ScoreRecord]) -> List[ScoreRecord]:
    unique: Dict[Tuple[str, str, str], ScoreRecord] = {}
    for r in records:
        if r.sort_key in unique:
            logger.debug(f"Dropping duplicate score {r.sort_key}")
            continue
        unique[r.sort_key] = r
    return sorted(unique.values(), key=lambda r: r.sort_key)


class ExportRecords:
    """Accumulates rows during traversal; `snapshot()` hands out the ordered result."""

    def __init__(self):
        self._assessments: List[AssessmentRecord] = []
        self._scores: List[ScoreRecord] = []

    def add_assessment(self, record: AssessmentRecord) -> None:
        self._assessments.append(record)

    def add_score(self, record: ScoreRecord) -> None:
        self._scores.append(record)

    def snapshot(self) -> Tuple[List[AssessmentRecord], List[ScoreRecord]]:
        return sort_assessments(self._assessments), sort_scores(self._scores)

# ----------------------------- Gradebook Traversal ----------------------------- #

class GradebookExporter:
    def __init__(self, source: GradebookSource, use_provider: bool = False):
        self.source = source
        self.use_provider = use_provider

    def collect(self, term_eids: Iterable[str], run_started: datetime) -> ExportRecords:
        records = ExportRecords()
        seen: Set[str] = set()
        for term_eid in term_eids:
            try:
                sites = select_sites(self.source, term_eid)
            except Exception:
                logger.exception(f"Could not list sites for term: {term_eid}")
                continue
            logger.info(f"Sites to process for term {term_eid}: {len(sites)}")

            for site in sites:
                if site.id in seen:
                    logger.debug(f"Site {site.id} already exported this run, skipping")
                    continue
                seen.add(site.id)
                try:
                    self.export_site(site, records, run_started)
                except Exception:
                    logger.exception(f"Problem while processing gradebook export for site: {site.id}")
        return records

    def export_site(self, site: Site, records: ExportRecords, run_started: datetime) -> None:
        sections = expand_provider_sections(self.source, site) if self.use_provider else {}
        logger.debug(f"Processing site: {site.id} - {site.title}, use_provider: {self.use_provider}")

        users = self._eligible_users(site.id)
        if not users:
            logger.info(f"No users in site: {site.id}, skipping")
            return

        gradebook = self.source.get_gradebook(site.id)
        if gradebook is None:
            logger.info(f"No gradebook for site: {site.id}, skipping.")
            return

        assignments = self.source.get_assignments(gradebook.uid)
        if not assignments:
            logger.debug(f"No assignments for site: {site.id}, skipping")
            return
        logger.debug(f"Assignments for site ({site.id}) size: {len(assignments)}")

        for a in assignments:
            self._export_assignment(site, sections, gradebook, a, users, records)
        self._export_course_grades(site, sections, gradebook, records, run_started)

    def _eligible_users(self, site_id: str) -> Optional[List[User]]:
        try:
            return self.source.get_users_allowed(site_id, VIEW_OWN_GRADES)
        except Exception as e:
            logger.warning(f"Error retrieving users for site {site_id}: {e}")
            return None

    @staticmethod
    def _scopes(site: Site, sections: Dict[str, Set[str]]) -> List[str]:
        return sorted(sections) if sections else [site.id]

    @staticmethod
    def _scopes_for(site: Site, sections: Dict[str, Set[str]], user_eid: str) -> List[str]:
        if not sections:
            return [site.id]
        return [sid for sid in sorted(sections) if user_eid in sections[sid]]

    def _export_assignment(
        self,
        site: Site,
        sections: Dict[str, Set[str]],
        gradebook: Gradebook,
        a: Assignment,
        users: List[User],
        records: ExportRecords,
    ) -> None:
        description = f"From {a.external_app_name}" if a.external_app_name else ""
        scopes = self._scopes(site, sections)
        for scope_id in scopes:
            records.add_assessment(
                AssessmentRecord(
                    integration_id=integration_id(scope_id, a.id),
                    scope_id=scope_id,
                    name=a.name,
                    description=description,
                    due_date=format_date(a.due_date),
                    points=format_points(a.points),
                    is_counted=1 if a.counted else 0,
                    is_course_grade=0,
                    is_calculated=0,
                )
            )

        # Section rows all point at the id of the last section
        score_item_id = integration_id(scopes[-1], a.id)
        for u in users:
            gd = self.source.get_grade_definition(gradebook.uid, a.id, u.id)
            if gd is None or gd.grade is None or gd.date_recorded is None:
                continue
            graded_timestamp = gd.date_recorded.strftime(TIMESTAMP_FORMAT)
            for scope_id in self._scopes_for(site, sections, u.eid):
                records.add_score(
                    ScoreRecord(
                        assessment_integration_id=score_item_id,
                        scope_id=scope_id,
                        user_integration_id=u.eid,
                        grade=gd.grade,
                        reserved="",
                        graded_timestamp=graded_timestamp,
                    )
                )

    def _export_course_grades(
        self,
        site: Site,
        sections: Dict[str, Set[str]],
        gradebook: Gradebook,
        records: ExportRecords,
        run_started: datetime,
    ) -> None:
        scopes = self._scopes(site, sections)
        for scope_id in scopes:
            records.add_assessment(course_grade_assessment(scope_id))
        score_item_id = integration_id(scopes[-1], "CG")

        # Keys are eids; there is no recorded date, so the run start is used
        stamp = run_started.strftime(TIMESTAMP_FORMAT)
        course_grades = self.source.get_course_grades(gradebook.uid)
        for user_eid, grade in course_grades.items():
            if grade is None or grade == NOT_COMPUTED_GRADE:
                continue
            rounded = round_grade(grade)
            for scope_id in self._scopes_for(site, sections, user_eid):
                records.add_score(
                    ScoreRecord(
                        assessment_integration_id=score_item_id,
                        scope_id=scope_id,
                        user_integration_id=user_eid,
                        grade=rounded,
                        reserved="",
                        graded_timestamp=stamp,
                    )
                )

# ----------------------------- Config Loading ----------------------------- #

def load_config(path: Optional[str]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if path:
        if not os.path.exists(path):
            raise FileNotFoundError(path)
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
        if path.lower().endswith((".yml", ".yaml")):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text or "{}")
    # normalize shapes
    if not data.get("sakai"):
        data["sakai"] = {}
    if not data.get("starfish"):
        data["starfish"] = {}
    if not data["starfish"].get("export"):
        data["starfish"]["export"] = {}
    data["starfish"]["export"].setdefault("term", None)
    data["starfish"]["export"].setdefault("path", None)
    data["starfish"].setdefault("use_provider", None)
    if not data.get("logging"):
        data["logging"] = {}
    data["logging"].setdefault("level", None)
    return data


def parse_terms(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = str(value).split(",")
    terms = []
    for t in value:
        t = str(t).strip()
        if t:
            terms.append(t)
    return terms


def parse_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ExportSettings:
    terms: List[str] = field(default_factory=list)
    output_path: str = field(default_factory=tempfile.gettempdir)
    use_provider: bool = False

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "ExportSettings":
        starfish = cfg.get("starfish", {}) or {}
        export = starfish.get("export", {}) or {}
        terms = export.get("term")
        if terms is None:
            terms = os.getenv("STARFISH_EXPORT_TERM")
        path = export.get("path") or os.getenv("STARFISH_EXPORT_PATH") or tempfile.gettempdir()
        use_provider = starfish.get("use_provider")
        if use_provider is None:
            use_provider = os.getenv("STARFISH_USE_PROVIDER")
        return cls(terms=parse_terms(terms), output_path=str(path), use_provider=parse_bool(use_provider))


def resolve_connection(cfg: Dict[str, Any]) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    sakai = cfg.get("sakai", {}) or {}
    base_url = sakai.get("base_url") or os.getenv("SAKAI_BASE_URL")
    username = sakai.get("username") or os.getenv("SAKAI_USERNAME")
    password = sakai.get("password") or os.getenv("SAKAI_PASSWORD")
    return base_url, username, password


def setup_logging(level: Optional[str] = None) -> None:
    name = (level or os.getenv("STARFISH_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)

# ----------------------------- File Export ----------------------------- #

def delete_file(path: Path) -> bool:
    """Remove a previous export. Only files are deleted, never directories."""
    if not path.exists():
        return True
    if path.is_file():
        try:
            path.unlink()
            return True
        except OSError as e:
            logger.warning(f"Could not delete {path}: {e}")
            return False
    return False


def write_records(path: Path, header: Iterable[str], rows: Iterable[List[Any]]) -> None:
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as f:
            w = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
            w.writerow(header)
            w.writerows(rows)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except Exception:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def run_export(
    settings: ExportSettings,
    source: GradebookSource,
    run_started: Optional[datetime] = None,
) -> Tuple[List[AssessmentRecord], List[ScoreRecord]]:
    run_started = run_started or datetime.now()
    logger.info(f"{JOB_NAME} started.")

    output_dir = Path(settings.output_path)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExportError(f"Could not create output directory {output_dir}: {e}") from e
    assessment_file = output_dir / ASSESSMENT_FILE
    score_file = output_dir / SCORE_FILE

    # delete existing files so we know the data is current
    for p in (assessment_file, score_file):
        if delete_file(p):
            logger.debug(f"New file: {p}")

    term_eids = resolve_terms(settings.terms, source)
    if not term_eids:
        logger.info("No terms to process")
    exporter = GradebookExporter(source, use_provider=settings.use_provider)
    assessments, scores = exporter.collect(term_eids, run_started).snapshot()

    failures: List[str] = []
    for path, header, rows in (
        (assessment_file, AssessmentRecord.HEADER, assessments),
        (score_file, ScoreRecord.HEADER, scores),
    ):
        try:
            write_records(path, header, [r.as_row() for r in rows])
            logger.info(f"Wrote {len(rows)} row(s) to {path}")
        except (OSError, csv.Error) as e:
            logger.error(f"Could not write {path}: {e}")
            failures.append(f"{path}: {e}")
    if failures:
        raise ExportError("Export failed for " + "; ".join(failures))

    logger.info(f"{JOB_NAME} ended.")
    return assessments, scores

# ----------------------------- CLI & Main ----------------------------- #

def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Export Sakai gradebooks to Starfish assessment/score files")
    p.add_argument(
        "--config",
        help="Path to YAML/JSON config file. If omitted, uses ./config.yaml when present.",
    )
    return p.parse_args(argv)

def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    # Prefer explicit --config; otherwise auto-load ./config.yaml if present
    cfg_path = args.config if args.config else ("config.yaml" if os.path.exists("config.yaml") else None)
    cfg = load_config(cfg_path)
    setup_logging((cfg.get("logging", {}) or {}).get("level"))

    base_url, username, password = resolve_connection(cfg)
    if not base_url or not username or not password:
        logger.error("Missing Sakai base_url, username or password. Provide them in config under 'sakai', or set SAKAI_BASE_URL/SAKAI_USERNAME/SAKAI_PASSWORD.")
        sys.exit(2)

    settings = ExportSettings.from_config(cfg)
    client = SakaiClient(base_url)
    try:
        client.login(username, password)
    except (RuntimeError, requests.RequestException) as e:
        logger.error(f"Could not establish Sakai session: {e}")
        sys.exit(1)

    try:
        run_export(settings, client)
    except ExportError as e:
        logger.error(str(e))
        sys.exit(1)
    except (RuntimeError, requests.RequestException) as e:
        logger.error(f"Could not resolve terms to export: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
