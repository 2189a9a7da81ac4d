from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# CLOSED ENUMS
# =============================================================================

class Species(str, Enum):
    CATTLE = "cattle"
    GOAT = "goat"
    SHEEP = "sheep"
    PIG = "pig"
    CHICKEN = "chicken"

    @property
    def tag_prefix(self) -> str:
        return TAG_PREFIXES[self]


TAG_PREFIXES = {
    Species.CATTLE: "CTL",
    Species.GOAT: "GT",
    Species.SHEEP: "SHP",
    Species.PIG: "PIG",
    Species.CHICKEN: "CHK",
}


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    SICK = "sick"
    QUARANTINE = "quarantine"
    CRITICAL = "critical"
    DECEASED = "deceased"


class AnimalStatus(str, Enum):
    ACTIVE = "active"
    DECEASED = "deceased"
    DELETED = "deleted"  # soft-delete marker, the row is kept


class ParentRole(str, Enum):
    DAM = "dam"
    SIRE = "sire"

    @property
    def column(self) -> str:
        return "dam_id" if self is ParentRole.DAM else "sire_id"


class Role(str, Enum):
    ADMIN = "Admin"
    FARM_MANAGER = "Farm Manager"
    SUPERVISOR = "Supervisor"
    VETERINARY_DOCTOR = "Veterinary Doctor"
    PASTURE_OFFICER = "Pasture Officer"
    FARM_ATTENDANT = "Farm Attendant"
    FEED_PRODUCTION_OFFICER = "Feed Production Officer"
    INVESTOR = "Investor"
    STAFF = "Staff"

    @classmethod
    def parse(cls, label: str) -> "Role":
        """Parse a role label from the auth layer; unknown labels raise ValueError."""
        normalized = (label or "").strip()
        if normalized == "Admin User":
            return cls.ADMIN
        return cls(normalized)


# =============================================================================
# PENS
# =============================================================================

class Pen(BaseModel):
    id: int
    name: str
    capacity: int
    species: Species
    location: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    occupancy: Optional[int] = None


class PenBody(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    capacity: int = Field(ge=1, le=1000)
    species: Species
    location: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class PenUpdateBody(BaseModel):
    # species is fixed at creation and deliberately absent here
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    capacity: Optional[int] = Field(default=None, ge=1, le=1000)
    location: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class PenAssignment(BaseModel):
    id: int
    pen_id: int
    attendant_id: Optional[int] = None
    supervisor_id: Optional[int] = None
    is_active: bool
    notes: Optional[str] = None
    assigned_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PenAssignmentBody(BaseModel):
    attendant_id: Optional[int] = Field(default=None, ge=1)
    supervisor_id: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = Field(default=None, max_length=500)


# =============================================================================
# ANIMALS
# =============================================================================

class Animal(BaseModel):
    id: int
    tag: str
    name: Optional[str] = None
    identification_number: Optional[str] = None
    species: Species
    breed: Optional[str] = None
    gender: Gender = Gender.UNKNOWN
    date_of_birth: Optional[date] = None
    dam_id: Optional[int] = None
    sire_id: Optional[int] = None
    pen_id: Optional[int] = None
    health_status: HealthStatus = HealthStatus.HEALTHY
    status: AnimalStatus = AnimalStatus.ACTIVE
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnimalBody(BaseModel):
    species: Species
    tag: Optional[str] = Field(default=None, min_length=1, max_length=50)
    name: Optional[str] = Field(default=None, max_length=100)
    identification_number: Optional[str] = Field(default=None, max_length=100)
    breed: Optional[str] = Field(default=None, max_length=100)
    gender: Gender = Gender.UNKNOWN
    date_of_birth: Optional[date] = None
    dam_id: Optional[int] = None
    sire_id: Optional[int] = None
    pen_id: Optional[int] = None
    health_status: HealthStatus = HealthStatus.HEALTHY
    notes: Optional[str] = None

    @field_validator("tag", mode="before")
    @classmethod
    def _blank_tag_is_generated(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("health_status")
    @classmethod
    def _not_deceased(cls, value: HealthStatus) -> HealthStatus:
        if value is HealthStatus.DECEASED:
            raise ValueError("new animals cannot be registered as deceased")
        return value


class TransferBody(BaseModel):
    pen_id: Optional[int] = None


class HealthStatusBody(BaseModel):
    status: HealthStatus
    notes: Optional[str] = None


class DeathBody(BaseModel):
    cause_of_death: str = Field(min_length=1, max_length=500)
    date_of_death: Optional[date] = None


class ParentageBody(BaseModel):
    dam_id: Optional[int] = None
    sire_id: Optional[int] = None


class MortalityRecord(BaseModel):
    id: int
    animal_id: int
    cause_of_death: str
    date_of_death: date
    reported_by: Optional[int] = None
    created_at: Optional[datetime] = None


class Parents(BaseModel):
    dam: Optional[Animal] = None
    sire: Optional[Animal] = None


# =============================================================================
# QUERIES
# =============================================================================

class SearchFilters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    species: Optional[Species] = None
    health_status: Optional[HealthStatus] = None
    pen_id: Optional[int] = None
    status: Optional[AnimalStatus] = None
    free_text: Optional[str] = Field(default=None, max_length=100)


class SearchResult(BaseModel):
    items: List[Animal]
    total: int
    page: int
    limit: int


class AnimalDetails(Animal):
    """An animal joined with its pen and the pen's active assignment."""

    pen_name: Optional[str] = None
    pen_location: Optional[str] = None
    attendant_id: Optional[int] = None
    supervisor_id: Optional[int] = None
    age_years: Optional[int] = None


class SpeciesCount(BaseModel):
    species: Species
    count: int


class LivestockStats(BaseModel):
    total_animals: int = 0
    active_animals: int = 0
    deceased_animals: int = 0
    healthy: int = 0
    sick: int = 0
    quarantine: int = 0
    critical: int = 0
    male: int = 0
    female: int = 0
    by_species: List[SpeciesCount] = Field(default_factory=list)


class HealthAlert(BaseModel):
    alert_type: str = "health_alert"
    message: str
    animal: AnimalDetails


# =============================================================================
# CALLERS AND AUDIT
# =============================================================================

class Caller(BaseModel):
    """An authenticated caller as supplied by the upstream auth layer."""

    model_config = ConfigDict(frozen=True)

    id: int
    role: Role


class RegistryEvent(BaseModel):
    id: int
    event_id: str
    event_type: str
    animal_id: Optional[int] = None
    pen_id: Optional[int] = None
    user_id: Optional[int] = None
    payload: dict = Field(default_factory=dict)
    event_time: Optional[datetime] = None
