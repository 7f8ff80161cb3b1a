"""
Pydantic models for API request validation.

Request bodies accept the camelCase keys the client sends as well as the
snake_case field names.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class MatchSessionCreate(BaseModel):
    """Settings for a new match session."""

    model_config = ConfigDict(populate_by_name=True)
    match_type: str = Field(alias="matchType")
    entry_fee_points: int = Field(default=20, alias="entryFeePoints")
    entry_fee_feathers: int = Field(default=10, alias="entryFeeFeathers")
    winner_points: int = Field(default=100, alias="winnerPoints")
    bet_currency_type: str = Field(default="NONE", alias="betCurrencyType")
    bet_amount_per_player: int = Field(default=0, alias="betAmountPerPlayer")
    creation_cost_points: int = Field(default=0, alias="creationCostPoints")
    creation_cost_feathers: int = Field(default=0, alias="creationCostFeathers")
    password: Optional[str] = None
    is_ranked: bool = Field(default=True, alias="isRanked")
    session_date: Optional[datetime] = Field(default=None, alias="sessionDate")
    location: Optional[str] = Field(default=None, max_length=200)
    court_number: Optional[str] = Field(default=None, alias="courtNumber", max_length=20)


class JoinSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    entry_currency: str = Field(default="POINTS", alias="entryCurrency")
    team: Optional[int] = None
    password: Optional[str] = None


class CompleteSessionRequest(BaseModel):
    """Reported result of a finished match."""

    model_config = ConfigDict(populate_by_name=True)
    result: str
    team1_score: Optional[int] = Field(default=None, alias="team1Score")
    team2_score: Optional[int] = Field(default=None, alias="team2Score")


class InvitationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    invitee_id: str = Field(alias="inviteeId")
    team: int
    message: Optional[str] = Field(default=None, max_length=500)


class InvitationAction(BaseModel):
    """accept / decline (invitee) or cancel (inviter)."""

    model_config = ConfigDict(populate_by_name=True)
    action: str
    entry_currency: str = Field(default="POINTS", alias="entryCurrency")
