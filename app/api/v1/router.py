"""Main API router that includes all endpoint routers."""

from fastapi import APIRouter

from app.api.v1 import procedures, rendezvous

api_router = APIRouter()

# Appointments
api_router.include_router(rendezvous.router, prefix="/rendezvous", tags=["Rendez-vous"])

# Procedures
api_router.include_router(procedures.router, prefix="/procedures", tags=["Procedures"])
