import logging

from .cache_utils import param_values_key, product_set_key, scratch_key
from .exceptions import CacheUnavailable
from .filters import canonical_value, without_slug
from .mirror import delete_quietly, mirror_errors
from .repositories import CatalogRepository
from .resolver import SCRATCH_TTL_SECONDS

logger = logging.getLogger(__name__)


def _value_order(entry):
    # Active values keep their relative order; the rest go by count, descending.
    if entry["active"]:
        return (0, 0)
    return (1, -entry["count"])


class FacetCalculator:
    """
    Computes, for every filterable attribute, the selectable values and the
    number of products each would match given the active filters.

    The primary attribute (brand) is never narrowed by other filters: all of
    its values stay listed, and its counts ignore the primary attribute's own
    selection so picking one brand does not zero out its siblings. Other
    attributes only list values that still match something, plus any value
    that is currently selected.
    """

    def __init__(self, client, resolver, primary_slug, repository=CatalogRepository):
        self.client = client
        self.resolver = resolver
        self.primary_slug = primary_slug
        self.repository = repository

    def compute_facets(self, filters):
        try:
            if self.resolver.mirror_ready():
                return self._compute(filters, cached=True)
            logger.info("Cache mirror not populated; computing facets from the store")
        except CacheUnavailable:
            logger.warning("Cache mirror unavailable; computing facets from the store", exc_info=True)
        return self._compute(filters, cached=False)

    def _compute(self, filters, cached):
        parameters = self.repository.filterable_parameters()
        if not parameters:
            return []

        primary = [p for p in parameters if p.slug == self.primary_slug]
        others = [p for p in parameters if p.slug != self.primary_slug]
        primary_filters = without_slug(filters, self.primary_slug)

        known = self._known_values([p.slug for p in parameters], cached)
        counts = {}
        if len(primary_filters) == len(filters):
            # The primary attribute is not selected, so every count shares one base.
            counts.update(self._counts(
                {p.slug: known.get(p.slug, []) for p in parameters}, filters, cached,
            ))
        else:
            if primary:
                counts.update(self._counts(
                    {self.primary_slug: known.get(self.primary_slug, [])}, primary_filters, cached,
                ))
            if others:
                counts.update(self._counts(
                    {p.slug: known.get(p.slug, []) for p in others}, filters, cached,
                ))

        facets = []
        for parameter in primary + others:
            facet = self._facet(parameter, known.get(parameter.slug, []), counts, filters)
            if facet["values"] or parameter.slug == self.primary_slug:
                facets.append(facet)
        return facets

    def _facet(self, parameter, values, counts, filters):
        slug = parameter.slug
        is_primary = slug == self.primary_slug
        selected = {canonical_value(value) for value in filters.get(slug, [])}

        entries = []
        for value in sorted(values, key=canonical_value):
            key = canonical_value(value)
            count = counts.get((slug, key), 0)
            active = key in selected
            if is_primary or active or count > 0:
                entries.append({"value": value, "count": count, "active": active})
        entries.sort(key=_value_order)
        return {"name": parameter.name, "slug": slug, "values": entries}

    def _known_values(self, slugs, cached):
        if not cached:
            return {slug: self.repository.parameter_values(slug) for slug in slugs}

        with mirror_errors("known_values"):
            pipe = self.client.pipeline(transaction=False)
            for slug in slugs:
                pipe.smembers(param_values_key(slug))
            results = pipe.execute()
        return {slug: list(members) for slug, members in zip(slugs, results)}

    def _counts(self, values_by_slug, filters, cached):
        if not cached:
            product_ids = self.resolver.resolve_relational(filters) if filters else None
            return self.repository.value_counts(product_ids=product_ids, slugs=list(values_by_slug))

        pairs = [(slug, canonical_value(value)) for slug, values in values_by_slug.items() for value in values]
        if not pairs:
            return {}
        if not filters:
            with mirror_errors("facet_counts"):
                pipe = self.client.pipeline(transaction=False)
                for slug, value in pairs:
                    pipe.scard(product_set_key(slug, value))
                return dict(zip(pairs, pipe.execute()))

        count_key = scratch_key("count")
        try:
            with self.resolver.stored_result(filters) as base_key:
                with mirror_errors("facet_counts"):
                    pipe = self.client.pipeline(transaction=False)
                    for slug, value in pairs:
                        # SINTERSTORE answers with the cardinality of the intersection.
                        pipe.sinterstore(count_key, [base_key, product_set_key(slug, value)])
                    pipe.expire(count_key, SCRATCH_TTL_SECONDS)
                    results = pipe.execute()
            return dict(zip(pairs, results[:len(pairs)]))
        finally:
            delete_quietly(self.client, [count_key])
