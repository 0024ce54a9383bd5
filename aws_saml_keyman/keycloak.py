# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# Copyright 2018 Nextdoor.com, Inc
# Copyright 2018 Nathan V
"""This contains all of the Keycloak specific code.

Keycloak has no API for this; we drive the same HTML forms a browser would.
The login details URL is the IdP initiated SSO URL of the AWS client, eg:

    https://sso.example.com/realms/corp/protocol/saml/clients/amazon-aws
"""
import logging
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from aws_saml_keyman import provider
from aws_saml_keyman.metadata import __version__

LOG = logging.getLogger(__name__)

LOGIN_FORM_ID = 'kc-form-login'
OTP_FORM_ID = 'kc-otp-login-form'


class Keycloak(provider.Provider):
    """Log in to Keycloak and fetch the SAML assertion for AWS."""

    def __init__(self):
        self.session = requests.Session()
        self.session.headers.update(
            {'User-Agent': 'aws_saml_keyman/{}'.format(__version__)})
        self.passcode_form = None

    @staticmethod
    def assertion(html):
        """Parse the assertion from the SAML response form.

        Args:
        html: String html from the IdP response

        Returns: String of the base64 encoded assertion, empty if none
        """
        assertion = ''
        soup = BeautifulSoup(html, 'html.parser')
        for inputtag in soup.find_all('input'):
            if inputtag.get('name') == 'SAMLResponse':
                assertion = inputtag.get('value', '')
        return assertion

    @staticmethod
    def form_data(form, base_url):
        """Return the absolute action URL and the inputs of a form."""
        action = urljoin(base_url, form.get('action', ''))
        data = {}
        for inputtag in form.find_all('input'):
            if inputtag.get('name'):
                data[inputtag.get('name')] = inputtag.get('value', '')
        return action, data

    @staticmethod
    def get_error_from_html(soup):
        """Find the error Keycloak is showing the user, if any."""
        for selector in ('#input-error', '.kc-feedback-text',
                         '#kc-error-message'):
            found = soup.select_one(selector)
            if found is not None and found.get_text().strip():
                return found.get_text().strip()
        return 'Unknown error'

    def _request(self, method, url, data=None):
        """Make a request and hand back the response; errors are fatal."""
        try:
            resp = self.session.request(method, url, data=data)
            resp.raise_for_status()
        except requests.exceptions.RequestException as err:
            LOG.error('Error calling Keycloak: {}'.format(err))
            raise provider.UnknownError(str(err)) from err
        return resp

    def authenticate(self, login_details):
        """Log in with the user name and password.

        Returns: String base64 encoded SAML assertion

        Raises:
            PasscodeRequired: Keycloak wants an OTP; see submit_passcode()
            InvalidPassword: Keycloak showed the login form again
        """
        LOG.debug('Fetching Keycloak login form from {}'.format(
            login_details.url))
        resp = self._request('GET', login_details.url)

        # An existing Keycloak session goes straight to the assertion
        assertion = self.assertion(resp.text)
        if assertion:
            return assertion

        soup = BeautifulSoup(resp.text, 'html.parser')
        form = soup.find('form', id=LOGIN_FORM_ID)
        if form is None:
            LOG.error('No Keycloak login form at {}'.format(
                login_details.url))
            raise provider.UnknownError(self.get_error_from_html(soup))

        action, data = self.form_data(form, resp.url)
        data['username'] = login_details.username
        data['password'] = login_details.password

        LOG.debug('Submitting Keycloak login form')
        resp = self._request('POST', action, data)
        return self.handle_response(resp)

    def handle_response(self, resp):
        """Work out what Keycloak wants after a login attempt."""
        assertion = self.assertion(resp.text)
        if assertion:
            LOG.info('Successfully authed with Keycloak')
            return assertion

        soup = BeautifulSoup(resp.text, 'html.parser')
        otp_form = soup.find('form', id=OTP_FORM_ID)
        if otp_form is not None:
            self.passcode_form = self.form_data(otp_form, resp.url)
            raise provider.PasscodeRequired('Keycloak OTP')

        if soup.find('form', id=LOGIN_FORM_ID) is not None:
            LOG.error(self.get_error_from_html(soup))
            raise provider.InvalidPassword()

        raise provider.UnknownError(self.get_error_from_html(soup))

    def submit_passcode(self, passcode):
        """Send the OTP passcode Keycloak asked for.

        Returns: String assertion, or None if the passcode was rejected
        """
        if not passcode:
            LOG.error('Passcode cannot be blank')
            return None

        action, data = self.passcode_form
        data = dict(data)
        # Older Keycloak releases call the field totp
        field = 'totp' if 'totp' in data else 'otp'
        data[field] = passcode

        resp = self._request('POST', action, data)
        assertion = self.assertion(resp.text)
        if assertion:
            LOG.info('Successfully authed with Keycloak')
            return assertion

        soup = BeautifulSoup(resp.text, 'html.parser')
        if soup.find('form', id=OTP_FORM_ID) is not None:
            LOG.error('Invalid Passcode Detected')
            return None

        raise provider.UnknownError(self.get_error_from_html(soup))
