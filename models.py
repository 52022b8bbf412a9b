# models.py
# Response shapes and the typed row container returned by the products query.
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

DB_CONNECTED = "connected"
DB_DISCONNECTED = "disconnected"
NETWORK_CONNECTED = "connected"
NETWORK_UNKNOWN = "unknown"


@dataclass
class HealthStatus:
    status: str = "ok"
    database: str = DB_DISCONNECTED
    network: str = NETWORK_UNKNOWN

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.status, "database": self.database, "network": self.network}


@dataclass(frozen=True)
class Identity:
    login_name: str
    display_name: str = ""


@dataclass
class UserInfo:
    connected: bool = False
    identity: Optional[Identity] = None
    error: str = ""

    @property
    def first_initial(self) -> str:
        if self.identity is None:
            return ""
        source = self.identity.display_name or self.identity.login_name
        return source[:1]

    def to_dict(self) -> Dict[str, Any]:
        # empty optional fields are left out of the body
        body: Dict[str, Any] = {"connected": self.connected}
        if self.connected and self.identity is not None:
            if self.identity.login_name:
                body["login_name"] = self.identity.login_name
            if self.identity.display_name:
                body["display_name"] = self.identity.display_name
            if self.first_initial:
                body["first_initial"] = self.first_initial
        if self.error:
            body["error"] = self.error
        return body


class ValueKind(Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    NULL = "null"


@dataclass(frozen=True)
class Field:
    name: str
    kind: ValueKind
    value: Any  # str for TEXT/TIMESTAMP, int|float for NUMBER, bool, or None


@dataclass(frozen=True)
class ProductRow:
    """One products row as ordered (column, typed value) pairs."""
    fields: Tuple[Field, ...] = field(default_factory=tuple)

    def get(self, name: str) -> Optional[Field]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: f.value for f in self.fields}
