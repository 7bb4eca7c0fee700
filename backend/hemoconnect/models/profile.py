from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import JSON, CheckConstraint, Column
from sqlmodel import Field, SQLModel

HemophiliaType = Literal["a", "b", "c", "vwd", "other", "carrier", "caregiver"]
SeverityLevel = Literal["mild", "moderate", "severe"]
Treatment = Literal["prophylaxis", "on-demand", "emicizumab", "gene-therapy", "other", "none"]
LifeStage = Literal["student", "young-adult", "parent", "professional", "retired", "caregiver"]

HEMOPHILIA_TYPE_LABELS: dict[str, str] = {
    "a": "Hemophilia A (Factor VIII)",
    "b": "Hemophilia B (Factor IX)",
    "c": "Hemophilia C (Factor XI)",
    "vwd": "Von Willebrand Disease",
    "other": "Other bleeding disorder",
    "carrier": "Carrier",
    "caregiver": "Caregiver / Family Member",
}

SEVERITY_LABELS: dict[str, str] = {
    "mild": "Mild",
    "moderate": "Moderate",
    "severe": "Severe",
}

TREATMENT_LABELS: dict[str, str] = {
    "prophylaxis": "Prophylaxis",
    "on-demand": "On-demand",
    "emicizumab": "Emicizumab (Hemlibra)",
    "gene-therapy": "Gene Therapy",
    "other": "Other",
    "none": "Not currently treating",
}

INTEREST_TOPICS: tuple[str, ...] = (
    "Joint Health",
    "Prophylaxis",
    "Travel",
    "Exercise",
    "Parenting",
    "Mental Health",
    "Diet & Nutrition",
    "Gene Therapy",
    "Insurance",
    "School / Work",
)


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint(
            "severity_level IS NULL OR severity_level IN ('mild', 'moderate', 'severe')",
            name="ck_profiles_severity_level",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    first_name: str = Field(default="")
    last_name: str = Field(default="")
    bio: str | None = Field(default=None)

    # Clinical matching fields
    hemophilia_type: str | None = Field(default=None)
    severity_level: str | None = Field(default=None)
    current_treatment: str | None = Field(default=None)
    life_stage: str | None = Field(default=None)
    topics: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    # Privacy
    profile_visible: bool = Field(default=True)
    peer_matching_enabled: bool = Field(default=True)
    profile_setup_complete: bool = Field(default=False)

    # 384-d MiniLM vector; null until the embedding job succeeds
    embedding: list[float] | None = Field(default=None, sa_column=Column(JSON, nullable=True))


# --- Pydantic schemas ---

class ProfileUpdate(BaseModel):
    first_name: str
    last_name: str
    bio: str | None = None
    hemophilia_type: HemophiliaType | None = None
    severity_level: SeverityLevel | None = None
    current_treatment: Treatment | None = None
    life_stage: LifeStage | None = None
    topics: list[str] = []
    profile_visible: bool = True
    peer_matching_enabled: bool = True


class ProfileRead(BaseModel):
    id: str
    first_name: str
    last_name: str
    bio: str | None
    hemophilia_type: str | None
    severity_level: str | None
    current_treatment: str | None
    life_stage: str | None
    topics: list[str]
    profile_visible: bool
    peer_matching_enabled: bool
    has_embedding: bool = False

    model_config = {"from_attributes": True}
