from pydantic import BaseModel, ConfigDict


class VerifiedUser(BaseModel):
    """Пользователь, подтвержденный сервисом пользователей."""
    id: str
    username: str
    email: str = ""

    model_config = ConfigDict(frozen=True)
