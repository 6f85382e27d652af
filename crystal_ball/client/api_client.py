from __future__ import annotations

from typing import Any

import httpx

from crystal_ball.client.upload_dialog import SelectedFile, UploadError


class CrystalBallClient:
    """Thin async HTTP client for the character endpoints the upload dialog needs."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.token = token

    async def __aenter__(self) -> "CrystalBallClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    @staticmethod
    def _raise_for_error(response: httpx.Response, fallback: str) -> None:
        if response.is_success:
            return
        try:
            message = response.json().get("error")
        except ValueError:
            message = None
        raise UploadError(message or fallback)

    async def login(self, email: str, password: str) -> dict[str, Any]:
        response = await self._client.post("/api/auth/login", json={"email": email, "password": password})
        self._raise_for_error(response, "Login failed")
        data = response.json()
        self.token = data["token"]
        return data["user"]

    async def list_levels(self, character_id: str) -> list[dict[str, Any]]:
        response = await self._client.get(f"/api/characters/{character_id}/levels", headers=self._headers())
        self._raise_for_error(response, "Failed to load character levels")
        return response.json()["levels"]

    async def existing_levels(self, character_id: str) -> set[int]:
        return {int(item["level"]) for item in await self.list_levels(character_id)}

    async def upload_level(self, character_id: str, file: SelectedFile, level: int) -> dict[str, Any]:
        response = await self._client.post(
            f"/api/characters/{character_id}/levels",
            data={"level": str(level)},
            files={"file": (file.name, file.data, file.content_type)},
            headers=self._headers(),
        )
        self._raise_for_error(response, "Failed to upload file")
        return response.json()

    def uploader(self, character_id: str):
        """Bind ``upload_level`` to a character, giving the ``upload(file, level)`` shape the dialog expects."""

        async def upload(file: SelectedFile, level: int) -> dict[str, Any]:
            return await self.upload_level(character_id, file, level)

        return upload
