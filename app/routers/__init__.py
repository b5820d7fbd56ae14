# Routers module for DwellTime API
from app.routers import detention_events
from app.routers import invoices
from app.routers import fleet_invoices
from app.routers import fleet_members
from app.routers import invitations
from app.routers import contacts
