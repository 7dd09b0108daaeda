from pydantic import BaseModel


class ProrationResult(BaseModel):
    """Credit for the unused part of a period and the net amount owed."""

    credit: int
    amount_due: int
    over_credit: int
    remaining_days: int
    days_in_period: int
