"""
Page/limit pagination producing the ``{data, pagination}`` envelope.
"""
from typing import Any, Callable, Dict, Optional

from django.core.paginator import Paginator


def paginate_queryset(queryset, page: int = 1, limit: int = 20,
                      serialize: Optional[Callable[[Any], Any]] = None) -> Dict:
    """
    Slice an ordered queryset into one page.

    Pages past the end return an empty ``data`` list rather than raising.
    """
    page = max(int(page), 1)
    paginator = Paginator(queryset, max(int(limit), 1))

    if paginator.count and page <= paginator.num_pages:
        items = list(paginator.page(page).object_list)
    else:
        items = []
    if serialize is not None:
        items = serialize(items)

    return {
        'data': items,
        'pagination': {
            'page': page,
            'limit': paginator.per_page,
            'total': paginator.count,
            'totalPages': paginator.num_pages if paginator.count else 0,
        },
    }
