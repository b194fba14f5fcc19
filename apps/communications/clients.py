"""
This module handles communication with the external messaging APIs.

Features:
- Send SMS through Twilio's REST API
- Send WhatsApp text messages through the WhatsApp Cloud API
- Transport failures never raise, every call returns (success, data, error)
"""

import logging
from typing import Dict, Optional, Tuple

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    """
    Raised when a channel cannot be used at all (missing credentials,
    unknown channel). Delivery failures are returned, not raised.
    """
    pass


class BaseMessagingClient:

    timeout = 30

    def _get_headers(self) -> Dict[str, str]:
        return {}

    def _request_kwargs(self, data: Optional[Dict]) -> Dict:
        return {'json': data}

    def _error_message(self, response) -> str:
        error_message = f"API returned {response.status_code}"
        try:
            error_data = response.json()
        except ValueError:
            return response.text or error_message
        if isinstance(error_data.get('error'), dict):
            return error_data['error'].get('message', error_message)
        return error_data.get('message', error_message)

    def _make_request(self, url: str, method: str = 'POST', data: Optional[Dict] = None) -> Tuple[bool, Optional[Dict], Optional[str]]:

        headers = self._get_headers()

        try:
            logger.info(f"Making {method} request to {url}")

            if method == 'GET':
                response = requests.get(url, headers=headers, auth=self._auth(), timeout=self.timeout)
            elif method == 'POST':
                response = requests.post(url, headers=headers, auth=self._auth(), timeout=self.timeout,
                                         **self._request_kwargs(data))
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            logger.info(f"Response status: {response.status_code}")

            if response.status_code in [200, 201]:
                return True, response.json(), None

            error_message = self._error_message(response)
            logger.error(f"API error: {error_message}")
            return False, None, error_message

        except requests.exceptions.Timeout:
            error_message = "Request timeout - messaging API did not respond"
            logger.error(error_message)
            return False, None, error_message

        except requests.exceptions.ConnectionError:
            error_message = "Connection error - could not reach messaging API"
            logger.error(error_message)
            return False, None, error_message

        except requests.exceptions.RequestException as e:
            error_message = f"Request error: {str(e)}"
            logger.error(error_message)
            return False, None, error_message

    def _auth(self):
        return None


class TwilioSMSClient(BaseMessagingClient):

    BASE_URL = 'https://api.twilio.com/2010-04-01'

    def __init__(self, account_sid: str = None, auth_token: str = None, from_number: str = None):
        self.account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or settings.TWILIO_FROM_NUMBER

        if not (self.account_sid and self.auth_token and self.from_number):
            raise MessagingError('SMS is not configured (TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN / TWILIO_FROM_NUMBER)')

    def _auth(self):
        return (self.account_sid, self.auth_token)

    def _request_kwargs(self, data: Optional[Dict]) -> Dict:
        # Twilio takes form-encoded bodies
        return {'data': data}

    def send_message(self, phone: str, message: str) -> Tuple[bool, Optional[str], Optional[str]]:

        logger.info(f"Sending SMS to {phone}")

        success, response_data, error = self._make_request(
            url=f"{self.BASE_URL}/Accounts/{self.account_sid}/Messages.json",
            method='POST',
            data={'To': phone, 'From': self.from_number, 'Body': message},
        )

        if success and response_data:
            sid = response_data.get('sid')
            logger.info(f"SMS sent successfully. SID: {sid}")
            return True, sid, None
        return False, None, error


class WhatsAppClient(BaseMessagingClient):

    def __init__(self, access_token: str = None, phone_number_id: str = None, api_url: str = None):
        self.access_token = access_token or settings.WHATSAPP_ACCESS_TOKEN
        self.phone_number_id = phone_number_id or settings.WHATSAPP_PHONE_NUMBER_ID
        self.api_url = (api_url or settings.WHATSAPP_API_URL).rstrip('/')

        if not (self.access_token and self.phone_number_id):
            raise MessagingError('WhatsApp is not configured (WHATSAPP_ACCESS_TOKEN / WHATSAPP_PHONE_NUMBER_ID)')

    def _get_headers(self) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {self.access_token}',
        }

    def send_message(self, phone: str, message: str) -> Tuple[bool, Optional[str], Optional[str]]:

        logger.info(f"Sending WhatsApp message to {phone}")

        payload = {
            'messaging_product': 'whatsapp',
            'to': phone.lstrip('+'),
            'type': 'text',
            'text': {'body': message},
        }

        success, response_data, error = self._make_request(
            url=f"{self.api_url}/{self.phone_number_id}/messages",
            method='POST',
            data=payload,
        )

        if success and response_data:
            messages = response_data.get('messages') or [{}]
            message_id = messages[0].get('id')
            logger.info(f"WhatsApp message sent successfully. ID: {message_id}")
            return True, message_id, None
        return False, None, error


def get_client(channel: str) -> BaseMessagingClient:
    """
    Client for 'sms' or 'whatsapp'

    Raises:
        MessagingError: Unknown channel or missing credentials
    """
    if channel == 'sms':
        return TwilioSMSClient()
    if channel == 'whatsapp':
        return WhatsAppClient()
    raise MessagingError(f'No API client for channel "{channel}"')
