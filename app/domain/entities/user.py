"""User entity — a candidate worker."""

from dataclasses import dataclass


@dataclass
class User:
    id: str
    first_name: str
    last_name: str = ""

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()
