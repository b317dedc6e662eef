from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlsplit

from formsync.core.errors import UnknownForm

# Decides from a fetched remote record whether the form already holds meaningful data.
MeaningfulPredicate = Callable[[dict], bool]


def _count(record: dict, key: str) -> int:
    try:
        return int(record.get(key) or 0)
    except (TypeError, ValueError):
        return 0


def any_positive(*keys: str) -> MeaningfulPredicate:
    """Meaningful as soon as one of the given counts is non-zero."""

    def _pred(record: dict) -> bool:
        return any(_count(record or {}, k) > 0 for k in keys)

    return _pred


@dataclass(frozen=True)
class FormDefinition:
    key: str
    title: str
    save_path: str
    fetch_path: str
    defaults: dict = field(default_factory=dict)
    is_meaningful: MeaningfulPredicate = any_positive()

    def fetch_url(self, owner_id: str) -> str:
        return f"{self.fetch_path.rstrip('/')}/{owner_id}"

    def load_values(self, record: dict) -> dict:
        """Map a remote record onto the form's fields, falling back to defaults."""
        out = {}
        for k, default in self.defaults.items():
            v = (record or {}).get(k)
            out[k] = v if v not in (None, "") else default
        return out


def _school_resources() -> FormDefinition:
    counts = [
        "res_armchairs_good", "res_armchairs_repair",
        "res_teacher_tables_good", "res_teacher_tables_repair",
        "res_blackboards_good", "res_blackboards_defective",
        "res_desktops_instructional", "res_desktops_admin",
        "res_laptops_teachers", "res_tablets_learners",
        "res_printers_working", "res_projectors_working",
        "res_toilets_male", "res_toilets_female", "res_toilets_pwd",
        "res_faucets",
        "res_sci_labs", "res_com_labs", "res_tvl_workshops",
    ]
    defaults: dict = {k: 0 for k in counts}
    defaults["res_internet_type"] = ""
    defaults["res_water_source"] = ""
    return FormDefinition(
        key="school_resources",
        title="School Resources",
        save_path="/api/save-school-resources",
        fetch_path="/api/school-resources",
        defaults=defaults,
        is_meaningful=any_positive("res_armchairs_good", "res_toilets_male"),
    )


def _teacher_specialization() -> FormDefinition:
    subjects = ["english", "filipino", "math", "science", "ap", "mapeh", "esp", "tle"]
    ancillary = ["guidance", "librarian", "ict_coord", "drrm_coord"]
    defaults: dict = {}
    for s in subjects:
        defaults[f"spec_{s}_major"] = 0
        defaults[f"spec_{s}_teaching"] = 0
    for a in ancillary:
        defaults[f"spec_{a}"] = 0
    return FormDefinition(
        key="teacher_specialization",
        title="Teacher Specialization",
        save_path="/api/save-teacher-specialization",
        fetch_path="/api/teacher-specialization",
        defaults=defaults,
        is_meaningful=any_positive("spec_math_major", "spec_guidance"),
    )


class FormCatalog:
    def __init__(self, forms: list[FormDefinition] | None = None):
        self._by_key: dict[str, FormDefinition] = {}
        self._by_path: dict[str, FormDefinition] = {}
        for f in forms or []:
            self.register(f)

    def register(self, form: FormDefinition) -> None:
        self._by_key[form.key] = form
        self._by_path[_normalize_path(form.save_path)] = form

    def get(self, key: str) -> FormDefinition:
        try:
            return self._by_key[key]
        except KeyError:
            raise UnknownForm(f"Unknown form: {key}") from None

    def keys(self) -> list[str]:
        return sorted(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def form_key_for_url(self, url: str) -> str:
        """Logical target of a mutation. Unknown endpoints are keyed by their path."""
        path = _normalize_path(url)
        form = self._by_path.get(path)
        return form.key if form else path


def _normalize_path(url: str) -> str:
    path = urlsplit(url).path or "/"
    path = "/" + path.strip("/")
    return path.lower()


def default_catalog() -> FormCatalog:
    return FormCatalog([_school_resources(), _teacher_specialization()])
