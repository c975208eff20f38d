# backend/stockfolio/services/holding_storage.py
from typing import Dict, List
import itertools
import uuid
from datetime import datetime, timezone
from ..models.portfolio import Holding

class InMemoryHoldingStore:
    """Holding documents scoped per user. Ids and creation times are assigned here."""

    def __init__(self):
        self.holdings: Dict[str, Dict[str, dict]] = {}
        self._sequence = itertools.count()

    async def add(self, user_id: str, ticker: str, quantity: float, buy_price: float) -> Holding:
        holding_id = str(uuid.uuid4())
        doc = {
            "id": holding_id,
            "ticker": ticker,
            "quantity": quantity,
            "buy_price": buy_price,
            "created_at": datetime.now(timezone.utc),
            "_seq": next(self._sequence),
        }
        self.holdings.setdefault(user_id, {})[holding_id] = doc
        return self._to_holding(doc)

    async def list(self, user_id: str) -> List[Holding]:
        # newest first
        docs = sorted(
            self.holdings.get(user_id, {}).values(),
            key=lambda d: (d["created_at"], d["_seq"]),
            reverse=True,
        )
        return [self._to_holding(doc) for doc in docs]

    async def delete(self, user_id: str, holding_id: str) -> bool:
        user_holdings = self.holdings.get(user_id, {})
        return user_holdings.pop(holding_id, None) is not None

    def _to_holding(self, doc: dict) -> Holding:
        return Holding(**{k: v for k, v in doc.items() if not k.startswith("_")})

# Global instance
holding_store = InMemoryHoldingStore()
