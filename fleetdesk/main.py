# FleetDesk backend entrypoint: booking lifecycle and invoicing API.

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fleetdesk.api import bookings
from fleetdesk.api import invoices
from fleetdesk.api import pricing
from fleetdesk.core.settings import get_settings
from fleetdesk.db.base import Base
from fleetdesk.db.session import engine

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

settings = get_settings()
app = FastAPI(title=settings.app_name, version=settings.api_version)

origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(bookings.router)
app.include_router(invoices.router)
app.include_router(pricing.router)


@app.get("/")
def read_root():
    return {"app": "FleetDesk backend", "status": "ok"}


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.on_event("startup")
def create_tables():
    Base.metadata.create_all(bind=engine)
