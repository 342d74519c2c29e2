"""The explore page's user directory, served by an outside API."""
import httpx
from pydantic import BaseModel, TypeAdapter


class DirectoryUser(BaseModel):
    id: int
    name: str


USERS = TypeAdapter(list[DirectoryUser])


async def fetch_users(url: str, *, http_client: httpx.AsyncClient) -> list[DirectoryUser]:
    resp = await http_client.get(url, headers={"Cache-Control": "no-store"})
    resp.raise_for_status()
    return USERS.validate_python(resp.json())
