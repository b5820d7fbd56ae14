import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt"""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def get_ses_client():
    """Get AWS SES client"""
    return boto3.client(
        'ses',
        region_name=settings.aws_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key
    )


class SesEmailService:
    """
    Delivery collaborator backed by AWS SES.

    Never raises for a provider failure: the outcome is reported in the
    DeliveryResult so the caller can record it.
    """

    def __init__(self, from_email: str, from_name: str):
        self.from_email = from_email
        self.from_name = from_name

    async def send_email(
        self,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: Optional[str] = None
    ) -> DeliveryResult:
        try:
            client = get_ses_client()

            message = {
                'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                'Body': {
                    'Text': {'Data': text_body, 'Charset': 'UTF-8'}
                }
            }

            if html_body:
                message['Body']['Html'] = {'Data': html_body, 'Charset': 'UTF-8'}

            response = await asyncio.to_thread(
                client.send_email,
                Source=f"{self.from_name} <{self.from_email}>",
                Destination={'ToAddresses': [to_email]},
                Message=message
            )

            logger.info(f"Email sent to {to_email}: {response['MessageId']}")
            return DeliveryResult(success=True, message_id=response['MessageId'])

        except ClientError as e:
            error = e.response.get('Error', {}).get('Message', str(e))
            logger.error(f"Failed to send email to {to_email}: {error}")
            return DeliveryResult(success=False, error=error)
        except BotoCoreError as e:
            logger.error(f"Error sending email to {to_email}: {e}")
            return DeliveryResult(success=False, error=str(e))


def get_email_service() -> Optional[SesEmailService]:
    """SES mailer, or None when no sender is configured"""
    if not settings.email_enabled:
        return None
    return SesEmailService(settings.aws_ses_from_email, settings.aws_ses_from_name)
