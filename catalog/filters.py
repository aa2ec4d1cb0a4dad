import hashlib
import json
import re
from collections.abc import Mapping

from django.db import models

from .exceptions import InvalidFilter

FILTER_PARAM_RE = re.compile(r"^filter\[(?P<slug>[^\[\]]+)\](?:\[\d*\])?$")


class SortOrder(models.TextChoices):
    ID_ASC = "id_asc", "Id ascending"
    PRICE_ASC = "price_asc", "Price ascending"
    PRICE_DESC = "price_desc", "Price descending"

    @classmethod
    def parse(cls, raw):
        # Unknown or missing sort keys fall back to id order.
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.ID_ASC


def canonical_value(value: str) -> str:
    return str(value).strip().lower()


def normalize_filters(raw) -> dict[str, list[str]]:
    """
    Turn a loosely shaped filter mapping into ``{slug: [value, ...]}``.

    Scalars are wrapped into one-element lists, blanks and duplicates are
    dropped (first spelling wins, order preserved), and slugs without any
    remaining value disappear. Anything that is not a string or a list of
    strings raises ``InvalidFilter``.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise InvalidFilter("Filters must be a mapping of attribute slug to values")

    normalized = {}
    for slug, values in raw.items():
        if not isinstance(slug, str) or not slug.strip():
            raise InvalidFilter(f"Invalid filter attribute: {slug!r}")

        if isinstance(values, str):
            values = [values]
        elif not isinstance(values, (list, tuple)):
            raise InvalidFilter(f"Invalid value for filter '{slug}': expected string or list of strings")

        cleaned = []
        seen = set()
        for value in values:
            if not isinstance(value, str):
                raise InvalidFilter(f"Invalid value for filter '{slug}': {value!r}")
            value = value.strip()
            key = canonical_value(value)
            if not value or key in seen:
                continue
            seen.add(key)
            cleaned.append(value)

        if cleaned:
            slug = slug.strip()
            normalized.setdefault(slug, [])
            normalized[slug].extend(v for v in cleaned if v not in normalized[slug])
    return normalized


def filters_from_query(query_params) -> dict[str, list[str]]:
    """Collect ``filter[slug]=v`` / ``filter[slug][]=v`` pairs from a QueryDict."""
    raw = {}
    for key in query_params.keys():
        match = FILTER_PARAM_RE.match(key)
        if not match:
            continue
        raw.setdefault(match.group("slug"), []).extend(query_params.getlist(key))
    return normalize_filters(raw)


def without_slug(filters: dict[str, list[str]], slug: str) -> dict[str, list[str]]:
    return {key: values for key, values in filters.items() if key != slug}


def filters_digest(filters: dict[str, list[str]]) -> str:
    if not filters:
        return "none"
    canonical = {
        slug: sorted({canonical_value(value) for value in values})
        for slug, values in filters.items()
    }
    payload = json.dumps(canonical, sort_keys=True, ensure_ascii=False)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()
