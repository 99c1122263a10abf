"""
FastAPI dependency providers.

Services are built once per application in ``create_app`` and handed to
routes from ``app.state`` here.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from app.services.custody import CustodyService


def get_custody_service(request: Request) -> CustodyService:
    return request.app.state.custody


Custody = Annotated[CustodyService, Depends(get_custody_service)]
