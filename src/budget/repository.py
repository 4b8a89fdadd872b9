"""Persistence for ledger state and budget alerts."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from src.models.data_models import BudgetAlert, BudgetPeriod, ScrapingMethod


@dataclass
class BudgetState:
    """Serializable ledger counters."""
    usage: Dict[BudgetPeriod, float]
    last_reset: Dict[BudgetPeriod, datetime]
    spend_by_method: Dict[ScrapingMethod, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "usage": {p.value: v for p, v in self.usage.items()},
            "last_reset": {p.value: ts.isoformat() for p, ts in self.last_reset.items()},
            "spend_by_method": {m.value: v for m, v in self.spend_by_method.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "BudgetState":
        return cls(
            usage={BudgetPeriod(p): float(v) for p, v in data["usage"].items()},
            last_reset={
                BudgetPeriod(p): datetime.fromisoformat(ts)
                for p, ts in data["last_reset"].items()
            },
            spend_by_method={
                ScrapingMethod(m): float(v)
                for m, v in data.get("spend_by_method", {}).items()
            },
        )


class BudgetRepository(Protocol):
    """Storage boundary for the ledger."""

    async def load(self) -> Optional[BudgetState]:
        ...

    async def save(self, state: BudgetState) -> None:
        ...

    async def record_alert(self, alert: BudgetAlert) -> None:
        ...


class InMemoryBudgetRepository:
    """Keeps the latest ledger state and alerts in process memory."""

    def __init__(self, state: Optional[BudgetState] = None):
        self.state = state
        self.alerts: List[BudgetAlert] = []
        self.saves = 0

    async def load(self) -> Optional[BudgetState]:
        return self.state

    async def save(self, state: BudgetState) -> None:
        self.state = state
        self.saves += 1

    async def record_alert(self, alert: BudgetAlert) -> None:
        self.alerts.append(alert)


class JsonFileBudgetRepository:
    """
    Stores ledger state in a JSON file.

    Lets successive scheduled invocations of the CLI share one ledger.
    Alerts are appended to a sibling ``.alerts.jsonl`` file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.alerts_path = self.path.with_suffix(".alerts.jsonl")

    async def load(self) -> Optional[BudgetState]:
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            return BudgetState.from_dict(json.load(f))

    async def save(self, state: BudgetState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
        tmp_path.replace(self.path)

    async def record_alert(self, alert: BudgetAlert) -> None:
        self.alerts_path.parent.mkdir(parents=True, exist_ok=True)
        entry = {
            "level": alert.level,
            "message": alert.message,
            "utilization": alert.utilization,
            "remaining": {p.value: v for p, v in alert.remaining.items()},
            "created_at": alert.created_at.isoformat(),
        }
        with open(self.alerts_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")
