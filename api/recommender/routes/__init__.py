from fastapi import APIRouter, FastAPI

from .recommendations import router as recommendations_router, scaffold_router as recommendations_scaffold_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(recommendations_router, prefix="/recommendations", tags=["recommendations"])

    app.include_router(
        recommendations_scaffold_router,
        prefix="/_scaffold/recommendations",
        tags=["scaffold-recommendations"],
    )


__all__ = ["include_modular_routers", "APIRouter"]
