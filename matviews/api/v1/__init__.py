from fastapi import APIRouter
from matviews.api.v1 import definitions, runs

router = APIRouter()

router.include_router(definitions.router, prefix="/definitions", tags=["definitions"])
router.include_router(runs.router, prefix="/runs", tags=["runs"])
