from __future__ import annotations

from dataclasses import dataclass

from roaster.config import Settings
from roaster.core.telemetry import TelemetryWriter
from roaster.core.vision import VisionPreprocessor
from roaster.db.session import Database
from roaster.llm.providers import AdapterRegistry, ProviderAdapter


@dataclass(slots=True)
class RoasterServices:
    """Process-wide collaborators, built once at startup and handed to each request."""

    settings: Settings
    database: Database
    adapters: AdapterRegistry
    vision: VisionPreprocessor
    telemetry: TelemetryWriter

    async def aclose(self) -> None:
        self.telemetry.flush()
        await self.adapters.aclose()
        await self.vision.aclose()
        self.database.dispose()


def build_services(
    settings: Settings,
    *,
    database: Database | None = None,
    adapters: dict[str, ProviderAdapter] | None = None,
    vision: VisionPreprocessor | None = None,
) -> RoasterServices:
    database = database or Database.from_settings(settings)
    return RoasterServices(
        settings=settings,
        database=database,
        adapters=AdapterRegistry(settings, adapters=adapters),
        vision=vision
        or VisionPreprocessor(
            settings.pdf_converter_service_url,
            timeout_sec=float(settings.pdf_converter_timeout_sec),
            max_pages=settings.vision_max_pages,
        ),
        telemetry=TelemetryWriter(database, policy=settings.bonus_credit_policy),  # type: ignore[arg-type]
    )
