from pydantic import BaseModel, ConfigDict, Field

from .policy import RoleClass, role_class_for


class Identity(BaseModel):
    """The authenticated caller a request runs on behalf of."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    username: str
    role: str
    display_name: str | None = Field(default=None, alias="displayName")

    @property
    def role_class(self) -> RoleClass:
        return role_class_for(self.role)

    @property
    def label(self) -> str:
        name = self.display_name or self.username
        return f"{name} ({self.username}) - Role: {self.role}"
