"""
Parked sale persistence: Redis for terminals, an in-memory dict for development and tests.
"""
import itertools
import json
import logging
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from pos_engine.atomic_scripts import AtomicScripts
from pos_engine.exceptions import InfrastructureError, NotFoundError
from pos_engine.models import ParkedSale
from pos_engine.redis_client import RedisClient, get_redis_client

logger = logging.getLogger(__name__)


class RedisParkedSaleStore:
    """
    Parked sales kept as JSON documents in a Redis hash, indexed by parked
    time in a sorted set. Records are never expired by Redis: expiry of a
    parked sale is informational only.
    """

    def __init__(self, namespace: str, redis_client: Optional[RedisClient] = None):
        self.redis = redis_client or get_redis_client()
        self.scripts = AtomicScripts(self.redis)
        self.records_key = f"parked:{namespace}:records"
        self.index_key = f"parked:{namespace}:index"
        self.seq_key = f"parked:{namespace}:seq"

    def _decode(self, parked_id: str, raw: str) -> ParkedSale:
        try:
            return ParkedSale.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise InfrastructureError(f"Corrupt parked sale record {parked_id}: {e}")

    def create_parked_sale(self, parked: ParkedSale) -> ParkedSale:
        record_json = parked.model_dump_json(exclude={"id"})
        parked_id = self.scripts.create_parked_sale(
            records_key=self.records_key,
            index_key=self.index_key,
            seq_key=self.seq_key,
            record_json=record_json,
            parked_at=parked.parked_at.timestamp(),
        )
        return parked.model_copy(update={"id": parked_id})

    def get_parked_sale(self, parked_id: str) -> ParkedSale:
        raw = self.redis.hget(self.records_key, parked_id)
        if raw is None:
            raise NotFoundError("Parked sale", parked_id)
        return self._decode(parked_id, raw)

    def list_parked_sales(self) -> List[ParkedSale]:
        """Parked sales, most recently parked first"""
        ids = self.redis.zrevrange(self.index_key, 0, -1)
        if not ids:
            return []
        records = self.redis.hmget(self.records_key, ids)
        parked_sales = []
        for parked_id, raw in zip(ids, records):
            if raw is None:
                logger.warning(f"Parked sale index entry without record: {parked_id}")
                continue
            parked_sales.append(self._decode(parked_id, raw))
        return parked_sales

    def delete_parked_sale(self, parked_id: str) -> None:
        deleted = self.scripts.delete_parked_sale(self.records_key, self.index_key, parked_id)
        if not deleted:
            raise NotFoundError("Parked sale", parked_id)


class InMemoryParkedSaleStore:
    """Parked sales held in process memory; lost on restart"""

    def __init__(self):
        self._records: Dict[str, ParkedSale] = {}
        self._ids = itertools.count(1)

    def create_parked_sale(self, parked: ParkedSale) -> ParkedSale:
        stored = parked.model_copy(update={"id": str(next(self._ids))})
        self._records[stored.id] = stored
        return stored

    def get_parked_sale(self, parked_id: str) -> ParkedSale:
        try:
            return self._records[parked_id]
        except KeyError:
            raise NotFoundError("Parked sale", parked_id)

    def list_parked_sales(self) -> List[ParkedSale]:
        return sorted(self._records.values(), key=lambda p: p.parked_at, reverse=True)

    def delete_parked_sale(self, parked_id: str) -> None:
        if self._records.pop(parked_id, None) is None:
            raise NotFoundError("Parked sale", parked_id)
