"""
Fleet invitation email template for DwellTime
Plain text format
"""
from datetime import datetime

from app.config import settings


def get_invitation_email_body(
    invitee_email: str,
    fleet_id: str,
    role: str,
    invitation_code: str,
    expires_at: datetime,
    accept_url: str
) -> str:
    """
    Generate plain text invitation email body

    Args:
        invitee_email: Email of the person being invited
        fleet_id: Fleet the invitation grants access to
        role: Role being assigned (admin, driver)
        invitation_code: Code to type in the app
        expires_at: When the code stops working
        accept_url: URL to accept the invitation

    Returns:
        Plain text email body
    """

    role_labels = {
        'admin': 'Fleet admin',
        'driver': 'Driver'
    }
    role_label = role_labels.get(role, role)

    text_body = f"""Hello!

You have been invited to join a fleet on DwellTime.

INVITATION DETAILS
--------------------
Fleet: {fleet_id}
Role: {role_label}
Your email: {invitee_email}

ACCEPT THE INVITATION
--------------------
Enter this code in the app: {invitation_code}
Or open this link:
{accept_url}

IMPORTANT
--------------------
- This invitation expires on {expires_at.strftime('%Y-%m-%d %H:%M UTC')}
- Sign in with {invitee_email} to accept it
- If you don't want to join, just ignore this email

----
{settings.email_signature}
"""

    return text_body


def get_invitation_subject() -> str:
    """Generate email subject for invitation"""
    return "You're invited to join a fleet on DwellTime"
