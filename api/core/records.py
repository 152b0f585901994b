"""
Transaction record model.

The wire shape is fixed: four string fields, with the transaction id carried
as `trans_id`. Values are never coerced; amounts and dates stay strings.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictStr

FIELD_DATE = "date"
FIELD_TRANSACTION_ID = "trans_id"
FIELD_AMOUNT = "amount"
FIELD_MESSAGE = "message"


def keyword_field(name: str) -> str:
    """
    Exact-match (unanalysed) form of a text field in the index mapping.
    """
    return f"{name}.keyword"


class TransactionRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    date: StrictStr
    transaction_id: StrictStr = Field(..., alias=FIELD_TRANSACTION_ID)
    amount: StrictStr
    message: StrictStr

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)
