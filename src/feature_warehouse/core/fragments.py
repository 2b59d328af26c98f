"""
Fragment Grouper - detect relations that are row-partitions of one logical table.

Source files of a large table are split into numbered fragments, e.g.
`train_applprev_1_0`, `train_applprev_1_1`. The trailing fragment index is
stripped to get the group key (`train_applprev_1`); names without a fragment
index (`train_person_1`, `train_static_cb_0`) stay singletons.
"""

import re
from dataclasses import dataclass, field

import structlog

from feature_warehouse.core.catalog import Catalog

logger = structlog.get_logger(__name__)

UNION_SUFFIX = "_union"
FILTERED_SUFFIX = "_filtered"
WIDE_SUFFIX = "_wide"
IDENTIFIERS_SUFFIX = "_identifiers"
DERIVED_SUFFIXES = (UNION_SUFFIX, FILTERED_SUFFIX, WIDE_SUFFIX, IDENTIFIERS_SUFFIX)

_FRAGMENT_PATTERN = re.compile(r"^(?P<key>\w+_\d+)_(?P<index>\d+)$")


class SchemaMismatchError(ValueError):
    """Raised when members of a fragment group disagree on their columns."""

    def __init__(self, key: str, detail: str, column_counts: dict[str, int] | None = None):
        self.key = key
        self.column_counts = column_counts or {}
        super().__init__(f"Fragment group '{key}' is inconsistent: {detail}")


def fragment_key(name: str) -> str | None:
    """
    Group key of a fragment table, or None when the name carries no fragment index.

    Example:
        >>> fragment_key("t_2_1"), fragment_key("t_3_1"), fragment_key("t_person_x")
        ('t_2', 't_3', None)
    """
    match = _FRAGMENT_PATTERN.match(name)
    return match.group("key") if match else None


def fragment_index(name: str) -> int:
    match = _FRAGMENT_PATTERN.match(name)
    if not match:
        raise ValueError(f"'{name}' is not a fragment table name")
    return int(match.group("index"))


def is_derived(name: str) -> bool:
    """True for relations produced by the pipeline rather than loaded from files."""
    return name.endswith(DERIVED_SUFFIXES)


@dataclass(frozen=True)
class FragmentGroup:
    """
    Relations holding row-fragments of one logical table.

    Attributes:
        key: Shared name prefix (fragment index stripped)
        members: Member relation names ordered by fragment index
    """

    key: str
    members: tuple[str, ...]

    @property
    def derived_name(self) -> str:
        return f"{self.key}{UNION_SUFFIX}"


@dataclass
class FragmentPlan:
    """
    Grouping of one partition's primary relations.

    Attributes:
        prefix: Partition prefix the plan was built for
        groups: Fragment groups by key
        singletons: Relations that are not fragments
    """

    prefix: str
    groups: dict[str, FragmentGroup] = field(default_factory=dict)
    singletons: list[str] = field(default_factory=list)

    def source_for(self, name: str) -> str | None:
        """
        Relation holding all rows of a logical table name.

        A fragment group resolves to its union relation, a singleton to itself.
        """
        if name in self.groups:
            return self.groups[name].derived_name
        if name in self.singletons:
            return name
        return None

    def logical_tables(self) -> list[str]:
        return sorted([*self.groups, *self.singletons])


def group_table_names(names: list[str]) -> tuple[dict[str, list[str]], list[str]]:
    """
    Split relation names into fragment groups and singletons by name only.

    Returns:
        (key -> member names ordered by fragment index, singleton names)
    """
    grouped: dict[str, list[str]] = {}
    singletons: list[str] = []
    for name in names:
        key = fragment_key(name)
        if key is None:
            singletons.append(name)
        else:
            grouped.setdefault(key, []).append(name)

    for key, members in grouped.items():
        members.sort(key=fragment_index)

    # A singleton that shares a group's key is an unsplit copy of the same table
    collisions = sorted(set(singletons) & set(grouped))
    if collisions:
        raise SchemaMismatchError(collisions[0], "a table and fragments of the same name are both present")

    return grouped, sorted(singletons)


def group_fragments(catalog: Catalog, prefix: str, exclude: tuple[str, ...] = ()) -> FragmentPlan:
    """
    Group the primary relations of a partition into fragment groups.

    Derived relations and the names in `exclude` (the base label table) are
    left out. Every member of a group must have the same column count.

    Args:
        catalog: Catalog holding the loaded relations
        prefix: Partition prefix (e.g. "train")
        exclude: Relation names to keep out of the plan

    Returns:
        FragmentPlan for the partition

    Raises:
        SchemaMismatchError: If group members disagree on column count
    """
    names = [
        name
        for name in catalog.list_tables(prefix=f"{prefix}_")
        if not is_derived(name) and name not in exclude
    ]
    grouped, singletons = group_table_names(names)

    plan = FragmentPlan(prefix=prefix, singletons=singletons)
    for key, members in sorted(grouped.items()):
        counts = {member: catalog.describe(member).column_count for member in members}
        if len(set(counts.values())) > 1:
            detail = ", ".join(f"{member}={count}" for member, count in counts.items())
            logger.error("fragment_column_count_mismatch", group=key, counts=counts)
            raise SchemaMismatchError(key, f"column counts differ ({detail})", counts)
        plan.groups[key] = FragmentGroup(key=key, members=tuple(members))

    logger.info(
        "fragments_grouped",
        prefix=prefix,
        groups=len(plan.groups),
        fragments=sum(len(g.members) for g in plan.groups.values()),
        singletons=len(plan.singletons),
    )
    return plan
