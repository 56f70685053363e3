from app.services.common import apply_ordering, apply_pagination


def list_response(items: list, total: int, limit: int, offset: int) -> dict:
    return {"items": items, "count": total, "limit": limit, "offset": offset}


class ListResponseMixin:
    """Paged list envelope for services that expose ``filtered_query``.

    ``count`` is the number of rows matching the filters, not the page size.
    """

    order_columns: dict = {}
    tiebreak_column = None

    @classmethod
    def filtered_query(cls, db, **filters):
        raise NotImplementedError

    @classmethod
    def list(cls, db, order_by: str, order_dir: str, limit: int, offset: int, **filters):
        query = cls.filtered_query(db, **filters)
        query = apply_ordering(
            query, order_by, order_dir, cls.order_columns, tiebreak=cls.tiebreak_column
        )
        return apply_pagination(query, limit, offset).all()

    @classmethod
    def list_response(cls, db, order_by: str, order_dir: str, limit: int, offset: int, **filters):
        total = cls.filtered_query(db, **filters).count()
        items = cls.list(db, order_by, order_dir, limit, offset, **filters)
        return list_response(items, total, limit, offset)
