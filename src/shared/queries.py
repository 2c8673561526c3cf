"""Helpers over repository query sets."""

PAGE_SIZE = 200


def fetch_all(queryset, page_size: int = PAGE_SIZE) -> list:
    """Every match of ``queryset``, read page by page.

    Query sets carry a default page limit, so anything that must see every
    row (sums, full histories) reads through here. The query set needs an
    explicit ``order_by`` for the pages to be stable.
    """
    items = []
    offset = 0
    while True:
        page = queryset.offset(offset).limit(page_size).all().items
        items.extend(page)
        if len(page) < page_size:
            return items
        offset += page_size
