"""User health profile and its profile-sync wire format.

The device expects a single UTF-8 JSON object:

    {"age": 34, "sex": "F", "height": 168.5, "weight": 61.2, "fitness": 4}
"""

import json
from dataclasses import dataclass
from enum import Enum

FITNESS_MIN = 1
FITNESS_MAX = 5


class Sex(str, Enum):
    MALE = "M"
    FEMALE = "F"


@dataclass(frozen=True)
class UserProfile:
    """Profile sent to the device.

    Only type and range are checked here; domain semantics belong to the UI.
    """

    age: int
    sex: Sex
    height_cm: float
    weight_kg: float
    fitness_level: int

    def __post_init__(self) -> None:
        if not isinstance(self.sex, Sex):
            try:
                object.__setattr__(self, "sex", Sex(self.sex))
            except ValueError:
                raise ValueError(f"sex must be 'M' or 'F', got {self.sex!r}") from None
        if not _is_int(self.age) or self.age <= 0:
            raise ValueError(f"age must be a positive integer, got {self.age!r}")
        if not _is_number(self.height_cm) or self.height_cm <= 0:
            raise ValueError(f"height_cm must be a positive number, got {self.height_cm!r}")
        if not _is_number(self.weight_kg) or self.weight_kg <= 0:
            raise ValueError(f"weight_kg must be a positive number, got {self.weight_kg!r}")
        if not _is_int(self.fitness_level) or not FITNESS_MIN <= self.fitness_level <= FITNESS_MAX:
            raise ValueError(
                f"fitness_level must be an integer in [{FITNESS_MIN}, {FITNESS_MAX}], got {self.fitness_level!r}"
            )

    def to_dict(self) -> dict:
        """Return the wire-format field mapping."""
        return {
            "age": self.age,
            "sex": self.sex.value,
            "height": self.height_cm,
            "weight": self.weight_kg,
            "fitness": self.fitness_level,
        }

    def to_wire(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        """Build a profile from wire-format field names.

        Raises:
            ValueError: If a field is missing or out of range
        """
        try:
            return cls(
                age=data["age"],
                sex=data["sex"],
                height_cm=data["height"],
                weight_kg=data["weight"],
                fitness_level=data["fitness"],
            )
        except KeyError as e:
            raise ValueError(f"Missing profile field: {e.args[0]}") from None

    @classmethod
    def from_wire(cls, payload: bytes) -> "UserProfile":
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed profile payload: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("Profile payload must be a JSON object")
        return cls.from_dict(data)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one profile-sync call."""

    ok: bool
    reason: str | None = None
