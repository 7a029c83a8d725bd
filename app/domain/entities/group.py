"""Group entity — a collaboration group and its members."""

from dataclasses import dataclass, field

from app.domain.value_objects.enums import GroupRole


@dataclass
class GroupMember:
    user_id: str
    role: GroupRole = GroupRole.REGULAR_USER


@dataclass
class Group:
    id: str
    name: str
    members: list[GroupMember] = field(default_factory=list)

    def member_ids(self) -> list[str]:
        return [m.user_id for m in self.members]
