from dataclasses import dataclass
from enum import Enum

READ_OPERATIONS = ("findMany", "findFirst", "findUnique", "count", "aggregate", "groupBy")
MUTATING_OPERATIONS = ("create", "update", "delete", "upsert", "updateMany", "deleteMany")
PROJECTED_OPERATIONS = ("findMany", "findFirst", "findUnique")

SENSITIVE_FRAGMENTS = (
    "password",
    "oneTimePassword",
    "access_token",
    "refresh_token",
    "id_token",
    "token_type",
    "auth",
    "p256dh",
    "secret",
    "key",
)

ELEVATED_ROLES = frozenset({"INSTRUCTOR", "ADMIN"})


class RoleClass(str, Enum):
    ELEVATED = "elevated"
    RESTRICTED = "restricted"


def role_class_for(role: str) -> RoleClass:
    """Instructors and admins are elevated; students, mentors and anything
    unrecognised are restricted."""
    return RoleClass.ELEVATED if role.upper() in ELEVATED_ROLES else RoleClass.RESTRICTED


@dataclass(frozen=True)
class SecurityPolicy:
    role_class: RoleClass
    allowed_operations: tuple[str, ...] = READ_OPERATIONS
    blocked_operations: tuple[str, ...] = MUTATING_OPERATIONS
    projected_operations: tuple[str, ...] = PROJECTED_OPERATIONS
    sensitive_fragments: tuple[str, ...] = SENSITIVE_FRAGMENTS

    def prompt_rules(self, user_id: str, username: str, role: str) -> str:
        """Role-tier rules embedded in the generation prompt."""
        ops = ", ".join(self.allowed_operations)
        blocked = ", ".join(self.blocked_operations)
        sensitive = ", ".join(self.sensitive_fragments)
        identity = f'Current user ID: "{user_id}", username: "{username}", role: "{role}"'
        if self.role_class is RoleClass.ELEVATED:
            return (
                "INSTRUCTOR/ADMIN PRIVILEGES:\n"
                f"1. Can perform: {ops}\n"
                f"2. CANNOT perform: {blocked} (read-only access)\n"
                "3. ALWAYS use 'select' to specify only necessary fields for read operations\n"
                f"4. NEVER select sensitive fields like: {sensitive}\n"
                "5. Use proper where clauses for data security\n"
                f"6. {identity}"
            )
        return (
            "STUDENT/MENTOR RESTRICTIONS:\n"
            f"1. ONLY generate read operations ({ops})\n"
            f"2. NO mutations ({blocked}) allowed\n"
            "3. ALWAYS use 'select' to specify only necessary fields\n"
            f"4. NEVER select sensitive fields like: {sensitive}\n"
            "5. Always include proper where clauses scoped to the current user for data security\n"
            f"6. {identity}"
        )

    def correction_rules(self) -> str:
        ops = ", ".join(self.allowed_operations)
        blocked = ", ".join(self.blocked_operations)
        if self.role_class is RoleClass.ELEVATED:
            return f"- Can perform: {ops} (READ-ONLY)\n- CANNOT perform: {blocked}"
        return f"- ONLY read operations: {ops}\n- CANNOT perform: {blocked}"


POLICIES: dict[RoleClass, SecurityPolicy] = {
    RoleClass.ELEVATED: SecurityPolicy(RoleClass.ELEVATED),
    RoleClass.RESTRICTED: SecurityPolicy(RoleClass.RESTRICTED),
}


def policy_for(role: str | RoleClass) -> SecurityPolicy:
    role_class = role if isinstance(role, RoleClass) else role_class_for(role)
    return POLICIES[role_class]
