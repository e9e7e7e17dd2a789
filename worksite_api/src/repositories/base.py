from __future__ import annotations

from typing import Any, Dict, List, Optional

from src.db.client import DataClient
from src.db.query import MutationQuery, SelectQuery


class BaseRepository:
    """
    Base class for repositories providing common helpers.

    Note:
      Repositories receive the process-wide DataClient; all reads go through its
      query cache and all writes invalidate the affected table.
    """

    def __init__(self, client: DataClient) -> None:
        self.client = client

    @staticmethod
    def _apply_filters(query: Any, filters: Dict[str, Any]) -> Any:
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                query = query.in_(column, list(value))
            else:
                query = query.eq(column, value)
        return query

    async def fetch(self, query: SelectQuery) -> Any:
        """Execute a read and return the response data."""
        response = await query.execute()
        return response.data

    async def mutate(self, query: MutationQuery) -> Any:
        """Execute a write and return the response data."""
        response = await query.execute()
        return response.data


class TableRepository(BaseRepository):
    """
    Generic repository for a single table.

    Filters are passed as keyword arguments: scalar values become `eq`, lists
    become `in_`.
    """

    def __init__(self, client: DataClient, table: str) -> None:
        super().__init__(client)
        self.table = table

    async def fetch_all(self, columns: str = "*", order_by: Optional[str] = None, **filters: Any) -> List[dict]:
        query = self._apply_filters(self.client.from_(self.table).select(columns), filters)
        if order_by:
            query = query.order(order_by.lstrip("-"), desc=order_by.startswith("-"))
        return list(await self.fetch(query) or [])

    async def fetch_one(self, columns: str = "*", **filters: Any) -> Optional[dict]:
        query = self._apply_filters(self.client.from_(self.table).select(columns), filters)
        # Same list-shaped response as fetch_all; both reads share one cache slot.
        data = await self.fetch(query.limit(1))
        return data[0] if data else None

    async def create(self, values: Any) -> Any:
        return await self.mutate(self.client.from_(self.table).insert(values))

    async def update(self, values: Dict[str, Any], **filters: Any) -> Any:
        return await self.mutate(self._apply_filters(self.client.from_(self.table).update(values), filters))

    async def delete(self, **filters: Any) -> Any:
        return await self.mutate(self._apply_filters(self.client.from_(self.table).delete(), filters))
