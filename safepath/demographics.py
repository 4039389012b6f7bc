"""
demographics.py – Demographic profiles and matching predicates.

Two relations are defined here:

  matches(record, user)
      Is this stored score bucket about someone like `user`? Exact dispatch
      on the record's demographic_type; `overall` never matches (it is always
      included separately in scoring).

  is_demographically_relevant(reporter, rider)
      Should a report by `reporter` reach `rider`? OR over every axis both
      parties filled in. If nothing can be compared, relevance cannot be ruled
      out and the answer is True.

Absent or empty fields never match a specific bucket.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from safepath.errors import InvalidDemographicsError

_TRUE_VALUES  = {"yes", "true", "1"}
_FALSE_VALUES = {"no", "false", "0"}


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(v) for v in value if v is not None and str(v).strip()]


def _as_str(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
        if value is None:
            return None
    value = str(value).strip()
    return value or None


def _as_bool(value) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


@dataclass(frozen=True)
class UserDemographics:
    race_ethnicity: tuple = field(default_factory=tuple)
    gender: Optional[str] = None
    lgbtq_status: Optional[bool] = None
    religion: Optional[str] = None
    disability_status: tuple = field(default_factory=tuple)
    age_range: Optional[str] = None

    @classmethod
    def from_dict(cls, data) -> "UserDemographics":
        """
        Build a profile from a request body.

        Raises InvalidDemographicsError if `data` is missing or not a mapping.
        An empty mapping is valid: it is a user who shared nothing.
        """
        if isinstance(data, UserDemographics):
            return data
        if data is None or not isinstance(data, dict):
            raise InvalidDemographicsError("User demographics required")
        return cls(
            race_ethnicity=tuple(_as_list(data.get("race_ethnicity"))),
            gender=_as_str(data.get("gender")),
            lgbtq_status=_as_bool(data.get("lgbtq_status")),
            religion=_as_str(data.get("religion")),
            disability_status=tuple(_as_list(data.get("disability_status"))),
            age_range=_as_str(data.get("age_range")),
        )

    def to_dict(self) -> dict:
        return {
            "race_ethnicity":    list(self.race_ethnicity),
            "gender":            self.gender,
            "lgbtq_status":      self.lgbtq_status,
            "religion":          self.religion,
            "disability_status": list(self.disability_status),
            "age_range":         self.age_range,
        }


# ── Score-record predicates (one per axis) ───────────────────────────────────

def _contains(values, wanted) -> bool:
    return bool(wanted) and str(wanted) in values


def _equals(value, wanted) -> bool:
    return bool(value) and bool(wanted) and value == str(wanted)


def match_race_ethnicity(value, user: UserDemographics) -> bool:
    return _contains(user.race_ethnicity, value)


def match_gender(value, user: UserDemographics) -> bool:
    return _equals(user.gender, value)


def match_lgbtq(value, user: UserDemographics) -> bool:
    if user.lgbtq_status is None or value is None:
        return False
    wanted = str(value).strip().lower()
    if user.lgbtq_status:
        return wanted in _TRUE_VALUES
    return wanted in _FALSE_VALUES


def match_religion(value, user: UserDemographics) -> bool:
    return _equals(user.religion, value)


def match_disability(value, user: UserDemographics) -> bool:
    return _contains(user.disability_status, value)


RECORD_MATCHERS = {
    "race_ethnicity": match_race_ethnicity,
    "gender":         match_gender,
    "lgbtq":          match_lgbtq,
    "religion":       match_religion,
    "disability":     match_disability,
}


def matches(record, user: UserDemographics) -> bool:
    """True if a SafetyScoreRecord's bucket describes `user`."""
    matcher = RECORD_MATCHERS.get(record.demographic_type)
    if matcher is None:     # 'overall' and unknown types
        return False
    return matcher(record.demographic_value, user)


# ── Profile-to-profile relevance (OR across axes) ───────────────────────────

def _compare_lists(a, b):
    if not a or not b:
        return None
    return bool(set(a) & set(b))


def _compare_values(a, b):
    if not a or not b:
        return None
    return a == b


def _compare_flags(a, b):
    if a is None or b is None:
        return None
    return a == b


AXIS_COMPARATORS = [
    ("race_ethnicity",    _compare_lists),
    ("gender",            _compare_values),
    ("lgbtq_status",      _compare_flags),
    ("disability_status", _compare_lists),
    ("religion",          _compare_values),
]


def is_demographically_relevant(reporter: Optional[UserDemographics],
                                rider: Optional[UserDemographics]) -> bool:
    """
    Decide whether a report by `reporter` is relevant to `rider`.

    Each comparator returns None when either side has no data for that axis.
    """
    if reporter is None or rider is None:
        return True

    compared = 0
    for attr, compare in AXIS_COMPARATORS:
        outcome = compare(getattr(reporter, attr), getattr(rider, attr))
        if outcome is None:
            continue
        compared += 1
        if outcome:
            return True
    return compared == 0


def is_racial_minority(user: UserDemographics) -> bool:
    return any(v.lower() != "white" for v in user.race_ethnicity)


def has_marginalised_identity(user: UserDemographics) -> bool:
    """Any identity axis that hate-crime statistics are relevant to."""
    return (is_racial_minority(user) or bool(user.lgbtq_status)
            or bool(user.religion) or bool(user.disability_status))
