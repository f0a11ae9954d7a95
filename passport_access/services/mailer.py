"""
Email adapters used by the notification sink.

- LogMailer: development default, writes a sanitized line to the log
- SESMailer: AWS SES via boto3
"""

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from passport_access.config import settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    pass


class Mailer:
    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        """Send one email and return a provider message id. Raises MailDeliveryError."""
        raise NotImplementedError


class LogMailer(Mailer):
    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        logger.info(f"Email queued for delivery (log provider): subject={subject!r}")
        return "log"


class SESMailer(Mailer):
    def __init__(self, sender: Optional[str] = None, region: Optional[str] = None, client=None):
        self.sender = sender or settings.EMAIL_SENDER
        if client is not None:
            self.ses_client = client
        elif settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            self.ses_client = boto3.client(
                'ses',
                region_name=region or settings.AWS_REGION,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY
            )
        else:
            self.ses_client = boto3.client('ses', region_name=region or settings.AWS_REGION)

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        body = {'Html': {'Data': html}}
        if text:
            body['Text'] = {'Data': text}
        try:
            response = self.ses_client.send_email(
                Source=self.sender,
                Destination={'ToAddresses': [to]},
                Message={
                    'Subject': {'Data': subject},
                    'Body': body
                }
            )
        except (BotoCoreError, ClientError) as e:
            raise MailDeliveryError(f"SES send failed: {type(e).__name__}") from e

        logger.info(f"Email sent: {response['MessageId']}")
        return response['MessageId']


def get_mailer() -> Mailer:
    if settings.EMAIL_PROVIDER.lower() == "ses":
        return SESMailer()
    return LogMailer()
