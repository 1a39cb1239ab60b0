"""Chit Chats proxy request schemas."""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from shipdesk.services.chitchats.search import SearchQuery

TRUE_FLAGS = ("1", "true", "yes")
FALSE_FLAGS = ("0", "false")


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ChitChatsQuery(BaseModel):
    """Query-string parameters accepted by the proxy."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    resource: str = ""
    id: Optional[str] = None
    status: str = ""
    format: str = "zpl"

    # Search
    order_id: str = Field(default="", alias="orderId")
    tracking: str = ""
    q: str = ""
    batch_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("batchId", "batch_id"),
    )
    fast: bool = False
    page_size: Optional[int] = Field(default=None, alias="pageSize", ge=1)
    timeout_ms: Optional[int] = Field(default=None, alias="timeoutMs", ge=0)
    pending_only: bool = Field(default=True, alias="pendingOnly")

    # Ping
    limit: int = Field(default=25, ge=1)
    page: int = Field(default=1, ge=1)

    @field_validator("resource", "format", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> str:
        return str(v or "").strip().lower()

    @field_validator("order_id", "tracking", "q", "status", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("id", "batch_id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> Optional[str]:
        return _optional_str(v)

    @field_validator("fast", mode="before")
    @classmethod
    def _fast(cls, v: Any) -> bool:
        return str(v or "").strip().lower() in TRUE_FLAGS

    @field_validator("pending_only", mode="before")
    @classmethod
    def _pending_only(cls, v: Any) -> bool:
        return str(v if v is not None else "1").strip().lower() not in FALSE_FLAGS

    def to_search_query(
        self,
        default_page_size: int = 500,
        default_timeout_ms: int = 9000,
    ) -> SearchQuery:
        return SearchQuery(
            order_id=self.order_id,
            tracking=self.tracking,
            q=self.q,
            status=self.status,
            batch_id=self.batch_id or "",
            pending_only=self.pending_only,
            fast=self.fast,
            page_size=self.page_size or default_page_size,
            timeout_ms=self.timeout_ms if self.timeout_ms is not None else default_timeout_ms,
        )


class ChitChatsAction(BaseModel):
    """JSON body of POST/PATCH requests.

    Several historical spellings are accepted for the same field.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    action: str = ""
    description: Optional[str] = None

    shipment: Optional[dict] = None
    payload: Optional[dict] = None

    shipment_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("shipment_id", "shipmentId"),
    )
    id: Optional[str] = None
    postage_type: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("postage_type", "postageType"),
    )
    batch_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("batch_id", "batchId"),
    )
    shipment_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("shipmentIds", "shipment_ids"),
    )

    @field_validator("action", mode="before")
    @classmethod
    def _action(cls, v: Any) -> str:
        return str(v or "").strip().lower()

    @field_validator("shipment_id", "id", "batch_id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> Optional[str]:
        return _optional_str(v)

    @field_validator("shipment_ids", mode="before")
    @classmethod
    def _ids(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(x) for x in v if x is not None and str(x).strip()]

    def target_id(self, query_id: Optional[str] = None) -> str:
        """Shipment id from body (shipment_id, then id) or the query string."""
        return self.shipment_id or self.id or query_id or ""

    @property
    def client_shipment(self) -> dict:
        return self.shipment or self.payload or {}

    def batch_shipment_ids(self, query_id: Optional[str] = None) -> list[str]:
        """Ids for add/remove: shipmentIds[], else shipment_id, else ?id=."""
        if self.shipment_ids:
            return self.shipment_ids
        if self.shipment_id:
            return [self.shipment_id]
        return [query_id] if query_id else []


class AddressVerifyRequest(BaseModel):
    """Body of the standalone address verification endpoint."""

    to: dict = Field(default_factory=dict)
