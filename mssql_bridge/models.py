from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ObjectKind(str, Enum):
    TABLE = "table"
    VIEW = "view"


class MutationStrategy(str, Enum):
    """How a mutated row is handed back to the caller.

    Resolved once per object at discovery time:

    * DIRECT: no enabled trigger, the statement carries its own OUTPUT clause.
    * IDENTITY_RESELECT: a trigger blocks OUTPUT, the row is re-read through
      SCOPE_IDENTITY() in the same batch.
    * KEY_RESELECT: a trigger blocks OUTPUT and there is no identity, the row
      is re-read through the primary key value supplied by the caller.
    * STAGING: none of the above can address the row, OUTPUT is redirected
      into a per-execution temporary table which is read back and dropped.
    """

    DIRECT = "direct"
    IDENTITY_RESELECT = "identity_reselect"
    KEY_RESELECT = "key_reselect"
    STAGING = "staging"


class ConnectionTarget(BaseModel):
    """One configured database, exposed under ``/{name}``."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    host: str
    port: int = 1433
    database: str
    user: str
    password: str = ""
    filter: str = "%"


class Column(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    nullable: bool = True
    max_length: Optional[int] = None


class DiscoveredObject(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: str
    schema_name: str
    name: str
    kind: ObjectKind
    columns: Tuple[Column, ...]
    primary_key: Tuple[str, ...] = ()
    identity_column: Optional[str] = None
    has_enabled_trigger: bool = False
    strategy: MutationStrategy = MutationStrategy.DIRECT

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.target, self.name)

    @property
    def is_view(self) -> bool:
        return self.kind is ObjectKind.VIEW

    @property
    def key_column(self) -> Optional[str]:
        """The addressable key, only when the key is a single column."""
        if len(self.primary_key) == 1:
            return self.primary_key[0]
        return None

    @property
    def is_mutable(self) -> bool:
        return not self.is_view and self.key_column is not None

    def column(self, name: str) -> Optional[Column]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]


class ListRequest(BaseModel):
    filters: Dict[str, Any] = Field(default_factory=dict)
    order_column: Optional[str] = None
    descending: bool = False
    limit: int = -1
    offset: int = 0
