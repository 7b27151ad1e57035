"""
Checks on list-endpoint query filters, applied before a request is sent.

The API answers a bad ``sort`` field or an out-of-range status id with
a 400, which would only surface after a rate-limiter slot has been
spent.  :func:`validate_filters` rejects such values up front with a
``ValueError`` and normalises ``sort_direction`` to upper case.
Filters are the snake_case keyword arguments of the client's list
helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

SORT_DIRECTIONS = ("ASC", "DESC")

CUSTOMER_TYPES = {1: "Customer", 2: "Business"}
PART_TYPES = {1: "Part", 2: "Tire", 5: "Battery"}


@dataclass(frozen=True)
class FilterRules:
    """Constraints for one list resource.

    ``sorts`` of ``None`` leaves the sort field unchecked.
    """

    sorts: Optional[Tuple[str, ...]] = None
    multi_sort: bool = False
    max_status: Optional[int] = None


RULES: Dict[str, FilterRules] = {
    "repair-orders": FilterRules(
        sorts=("createdDate", "repairOrderNumber", "customer.firstName", "customer.lastName"),
        max_status=7,
    ),
    "customers": FilterRules(sorts=("lastName", "firstName", "email"), multi_sort=True),
    # jobs cannot be filtered on deleted repair orders
    "jobs": FilterRules(sorts=("authorizedDate",), max_status=6),
    "inventory": FilterRules(sorts=("id", "name", "brand", "partNumber"), multi_sort=True),
}


def normalize_sort_direction(direction: str) -> str:
    upper = str(direction).upper()
    if upper not in SORT_DIRECTIONS:
        raise ValueError(f"invalid sort direction '{direction}': must be ASC or DESC")
    return upper


def check_sort(sort: str, allowed: Sequence[str], *, multiple: bool = False) -> None:
    fields = [part.strip() for part in sort.split(",")] if multiple else [sort]
    for name in fields:
        if name not in allowed:
            raise ValueError(
                f"invalid sort field '{name}': supported fields are {', '.join(allowed)}"
            )


def check_status_ids(status_ids: Any, highest: int) -> None:
    values = [status_ids] if isinstance(status_ids, int) else list(status_ids)
    for status_id in values:
        if isinstance(status_id, bool) or not isinstance(status_id, int) or not 1 <= status_id <= highest:
            raise ValueError(
                f"invalid repairOrderStatusId '{status_id}': must be 1-{highest}"
            )


def _check_choice(name: str, value: Any, choices: Mapping[int, str]) -> None:
    if value not in choices or isinstance(value, bool):
        options = ", ".join(f"{key} ({label})" for key, label in choices.items())
        raise ValueError(f"invalid {name} '{value}': must be one of {options}")


def validate_filters(resource: str, filters: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a checked copy of ``filters`` for ``resource``.

    Raises
    ------
    ValueError
        If a sort field, sort direction, status id, customer type or
        part type is not accepted by the endpoint.
    """
    rules = RULES.get(resource, FilterRules())
    checked = dict(filters)

    direction = checked.get("sort_direction")
    if direction:
        checked["sort_direction"] = normalize_sort_direction(direction)

    sort = checked.get("sort")
    if sort and rules.sorts is not None:
        check_sort(sort, rules.sorts, multiple=rules.multi_sort)

    status_ids = checked.get("repair_order_status_id")
    if status_ids is not None and rules.max_status is not None:
        check_status_ids(status_ids, rules.max_status)

    if resource == "customers" and checked.get("customer_type_id") is not None:
        _check_choice("customerTypeId", checked["customer_type_id"], CUSTOMER_TYPES)
    if resource == "inventory":
        _check_choice("partTypeId", checked.get("part_type_id"), PART_TYPES)

    return checked
