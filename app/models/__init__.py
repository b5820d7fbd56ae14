# Models module for DwellTime API
from app.models.detention_event import (
    DetentionEvent, DetentionEventCreate, DetentionEventEnd, DetentionEventUpdate,
    DetentionCalculation, LiveDetention, DetentionEventStatus, EventType
)
from app.models.invoice import (
    Invoice, InvoiceCreate, InvoiceDocument, InvoiceEmail, InvoiceEmailRequest,
    RecipientInfo, AgingBucket, AgingSummary,
    InvoiceStatus, InvoiceOwnerType, InvoiceEmailStatus
)
from app.models.fleet_member import (
    FleetMember, FleetMemberUpdate, FleetRole, MemberStatus
)
from app.models.invitation import (
    FleetInvitation, InvitationCreate, InvitationResend, InvitationAccept, InvitationLookup
)
from app.models.email_contact import (
    EmailContact, EmailContactUpsert, ContactType
)
